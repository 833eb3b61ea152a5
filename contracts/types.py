"""Core data contracts for checkerboard detection, calibration and undistortion."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import numpy as np

from exceptions import InvalidIntrinsicsError

PixelBuffer = np.ndarray


@dataclass(frozen=True)
class CheckerboardSpec:
    cols: int  # interior corners along x
    rows: int  # interior corners along y
    square_size: float = 1.0

    def __post_init__(self) -> None:
        if int(self.cols) != self.cols or int(self.rows) != self.rows:
            raise ValueError(f"Checkerboard dimensions must be integers, got {self.cols}x{self.rows}")
        if self.cols < 2 or self.rows < 2:
            raise ValueError(f"Checkerboard needs at least 2x2 interior corners, got {self.cols}x{self.rows}")
        if not self.square_size > 0:
            raise ValueError(f"Square size must be positive, got {self.square_size}")

    @property
    def corner_count(self) -> int:
        return self.cols * self.rows

    def object_points(self) -> np.ndarray:
        """Planar reference grid (z = 0) in row-major corner order."""
        objp = np.zeros((self.corner_count, 3), np.float64)
        objp[:, :2] = np.mgrid[0 : self.cols, 0 : self.rows].T.reshape(-1, 2)
        objp[:, :2] *= float(self.square_size)
        return objp


@dataclass(frozen=True)
class CornerSet:
    board: CheckerboardSpec
    points: np.ndarray
    image_size: Tuple[int, int]  # (width, height)
    source: Optional[str] = None

    def __post_init__(self) -> None:
        points = np.asarray(self.points, dtype=np.float64).reshape(-1, 2)
        if len(points) != self.board.corner_count:
            raise ValueError(
                f"Corner set has {len(points)} points, expected {self.board.corner_count} "
                f"for a {self.board.cols}x{self.board.rows} board"
            )
        points.setflags(write=False)
        object.__setattr__(self, "points", points)

    def __len__(self) -> int:
        return len(self.points)

    def grid(self) -> np.ndarray:
        """Points reshaped to (rows, cols, 2)."""
        return self.points.reshape(self.board.rows, self.board.cols, 2)


@dataclass(frozen=True)
class Intrinsics:
    fx: float
    fy: float
    cx: float
    cy: float
    k1: float = 0.0
    k2: float = 0.0
    k3: float = 0.0
    k4: float = 0.0

    def __post_init__(self) -> None:
        values = (self.fx, self.fy, self.cx, self.cy, self.k1, self.k2, self.k3, self.k4)
        if not all(math.isfinite(float(v)) for v in values):
            raise InvalidIntrinsicsError(f"Intrinsics contain non-finite values: {values}")
        if self.fx <= 0 or self.fy <= 0:
            raise InvalidIntrinsicsError(
                f"Focal lengths must be positive, got fx={self.fx}, fy={self.fy}"
            )

    @property
    def camera_matrix(self) -> np.ndarray:
        return np.array(
            [[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )

    @property
    def distortion(self) -> np.ndarray:
        return np.array([self.k1, self.k2, self.k3, self.k4], dtype=np.float64)

    def as_vector(self) -> np.ndarray:
        return np.array(
            [self.fx, self.fy, self.cx, self.cy, self.k1, self.k2, self.k3, self.k4],
            dtype=np.float64,
        )

    @classmethod
    def from_vector(cls, values: np.ndarray) -> "Intrinsics":
        return cls(*(float(v) for v in np.asarray(values, dtype=np.float64).ravel()[:8]))

    @classmethod
    def from_matrices(cls, K: Any, D: Any) -> "Intrinsics":
        """Build intrinsics from a 3x3 camera matrix and 4 distortion coefficients.

        Raises:
            InvalidIntrinsicsError: If K or D have the wrong shape or invalid values
        """
        try:
            K_arr = np.asarray(K, dtype=np.float64)
            D_arr = np.asarray(D, dtype=np.float64).ravel()
        except (TypeError, ValueError) as e:
            raise InvalidIntrinsicsError(f"Camera parameters are not numeric: {e}")
        if K_arr.shape != (3, 3):
            raise InvalidIntrinsicsError(f"Camera matrix must be 3x3, got shape {K_arr.shape}")
        if D_arr.size != 4:
            raise InvalidIntrinsicsError(
                f"Fisheye model needs exactly 4 distortion coefficients, got {D_arr.size}"
            )
        return cls(
            fx=float(K_arr[0, 0]),
            fy=float(K_arr[1, 1]),
            cx=float(K_arr[0, 2]),
            cy=float(K_arr[1, 2]),
            k1=float(D_arr[0]),
            k2=float(D_arr[1]),
            k3=float(D_arr[2]),
            k4=float(D_arr[3]),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "K": self.camera_matrix.tolist(),
            "D": self.distortion.tolist(),
        }


@dataclass(frozen=True)
class Pose:
    rvec: np.ndarray
    tvec: np.ndarray

    def __post_init__(self) -> None:
        for name in ("rvec", "tvec"):
            value = np.asarray(getattr(self, name), dtype=np.float64).reshape(3).copy()
            value.setflags(write=False)
            object.__setattr__(self, name, value)

    def rotation_matrix(self) -> np.ndarray:
        from calib.fisheye_model import rodrigues

        return rodrigues(self.rvec)


@dataclass(frozen=True)
class CalibrationResult:
    intrinsics: Intrinsics
    poses: Tuple[Pose, ...]
    per_view_errors_px: Tuple[float, ...]
    rms_error_px: float
    image_size: Tuple[int, int]
    iterations: int = 0
    diagnostics: Dict[str, Any] = field(default_factory=dict)

    @property
    def camera_matrix(self) -> np.ndarray:
        return self.intrinsics.camera_matrix

    @property
    def distortion(self) -> np.ndarray:
        return self.intrinsics.distortion


@dataclass(frozen=True)
class UndistortConfig:
    scale: float = 1.0
    balance: Optional[float] = None
    fov_scale: float = 1.0
    output_size: Optional[Tuple[int, int]] = None  # (width, height)
    border_value: float = 0.0
    interpolation: str = "linear"

    def __post_init__(self) -> None:
        if not self.scale > 0:
            raise ValueError(f"Undistort scale must be positive, got {self.scale}")
        if not self.fov_scale > 0:
            raise ValueError(f"fov_scale must be positive, got {self.fov_scale}")
        if self.balance is not None and not 0.0 <= self.balance <= 1.0:
            raise ValueError(f"balance must be within [0, 1], got {self.balance}")
        if self.output_size is not None and (self.output_size[0] <= 0 or self.output_size[1] <= 0):
            raise ValueError(f"output_size must be positive, got {self.output_size}")
        if self.interpolation not in ("linear", "nearest"):
            raise ValueError(f"Unsupported interpolation: {self.interpolation}")
