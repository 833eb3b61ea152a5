"""Fisheye undistortion by backward mapping and bilinear resampling."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Dict, Optional, Tuple, Union

import cv2
import numpy as np

from calib.fisheye_model import distort_theta, undistort_theta, unproject_rays
from contracts import Intrinsics, PixelBuffer, UndistortConfig
from exceptions import InvalidIntrinsicsError
from log_config.logger import get_logger, log_performance
from rectify.rectifier import Rectifier

logger = get_logger(__name__)

IntrinsicsLike = Union[Intrinsics, Tuple[object, object]]

_ROW_BLOCK = 256
_INTERPOLATION = {"linear": cv2.INTER_LINEAR, "nearest": cv2.INTER_NEAREST}
_MIN_RAY_Z = np.cos(np.radians(89.0))


@dataclass(frozen=True)
class UndistortMap:
    """Per-output-pixel source coordinates, reusable across same-sized images."""

    map_x: np.ndarray
    map_y: np.ndarray
    valid_mask: np.ndarray
    new_camera_matrix: np.ndarray
    source_size: Tuple[int, int]  # (width, height) of the images it applies to

    @property
    def output_size(self) -> Tuple[int, int]:
        return (self.map_x.shape[1], self.map_x.shape[0])

    @property
    def valid_fraction(self) -> float:
        """Share of output pixels sampled from inside the source image."""
        return float(self.valid_mask.mean())

    def apply(
        self,
        image: PixelBuffer,
        border_value: float = 0.0,
        interpolation: str = "linear",
    ) -> PixelBuffer:
        _check_image(image)
        height, width = image.shape[:2]
        if (width, height) != self.source_size:
            raise ValueError(
                f"Map built for {self.source_size[0]}x{self.source_size[1]} images, "
                f"got {width}x{height}"
            )
        return cv2.remap(
            image,
            self.map_x,
            self.map_y,
            interpolation=_INTERPOLATION[interpolation],
            borderMode=cv2.BORDER_CONSTANT,
            borderValue=(border_value,) * 4,
        )


class FisheyeRectifier(Rectifier):
    """Undistorts images for one intrinsics/config pair, caching maps by size."""

    def __init__(self, intrinsics: IntrinsicsLike, config: Optional[UndistortConfig] = None) -> None:
        self._intrinsics = coerce_intrinsics(intrinsics)
        self._config = config or UndistortConfig()
        self._maps: Dict[Tuple[int, int], UndistortMap] = {}

    @property
    def intrinsics(self) -> Intrinsics:
        return self._intrinsics

    def map_for(self, image_size: Tuple[int, int]) -> UndistortMap:
        key = (int(image_size[0]), int(image_size[1]))
        if key not in self._maps:
            self._maps[key] = build_undistort_map(self._intrinsics, key, self._config)
        return self._maps[key]

    def rectify(self, image: PixelBuffer) -> PixelBuffer:
        _check_image(image)
        height, width = image.shape[:2]
        undistort_map = self.map_for((width, height))
        return undistort_map.apply(
            image,
            border_value=self._config.border_value,
            interpolation=self._config.interpolation,
        )


def coerce_intrinsics(intrinsics: IntrinsicsLike) -> Intrinsics:
    """Accept Intrinsics or a (K, D) pair, failing fast on malformed values."""
    if isinstance(intrinsics, Intrinsics):
        return intrinsics
    if isinstance(intrinsics, (tuple, list)) and len(intrinsics) == 2:
        return Intrinsics.from_matrices(intrinsics[0], intrinsics[1])
    raise InvalidIntrinsicsError(
        f"Expected Intrinsics or a (K, D) pair, got {type(intrinsics).__name__}"
    )


def estimate_new_camera_matrix(
    intrinsics: Intrinsics,
    image_size: Tuple[int, int],
    config: Optional[UndistortConfig] = None,
) -> np.ndarray:
    """Camera matrix K' of the corrected image.

    Without ``balance`` K' is K with both focal lengths multiplied by
    ``scale`` and the principal point moved to the output size. With
    ``balance`` the focal length is interpolated between the value that keeps
    every output pixel inside the source (balance=0) and the one that keeps the
    whole source edge visible (balance=1), divided by ``fov_scale``, then
    multiplied by ``scale``.
    """
    config = config or UndistortConfig()
    width, height = image_size
    out_w, out_h = config.output_size or image_size
    sx = out_w / float(width)
    sy = out_h / float(height)

    if config.balance is None:
        fx = intrinsics.fx * config.scale * sx
        fy = intrinsics.fy * config.scale * sy
        cx = intrinsics.cx * sx
        cy = intrinsics.cy * sy
    else:
        edges = np.array(
            [[width / 2.0, 0.0], [width, height / 2.0], [width / 2.0, height], [0.0, height / 2.0]]
        )
        rays = unproject_rays(edges, intrinsics)
        z = np.maximum(rays[:, 2], _MIN_RAY_Z)
        aspect = intrinsics.fx / intrinsics.fy
        pts = np.stack([rays[:, 0] / z, rays[:, 1] / z * aspect], axis=1)
        center = pts.mean(axis=0)
        min_x, min_y = pts.min(axis=0)
        max_x, max_y = pts.max(axis=0)
        focals = np.array(
            [
                width * 0.5 / max(center[0] - min_x, 1e-12),
                width * 0.5 / max(max_x - center[0], 1e-12),
                height * 0.5 * aspect / max(center[1] - min_y, 1e-12),
                height * 0.5 * aspect / max(max_y - center[1], 1e-12),
            ]
        )
        f = config.balance * focals.min() + (1.0 - config.balance) * focals.max()
        f /= config.fov_scale
        fx = f * config.scale * sx
        fy = f / aspect * config.scale * sy
        cx = (-center[0] * f + width * 0.5) * sx
        cy = (-center[1] * f + height * 0.5 * aspect) / aspect * sy

    return np.array([[fx, 0.0, cx], [0.0, fy, cy], [0.0, 0.0, 1.0]], dtype=np.float64)


def build_undistort_map(
    intrinsics: IntrinsicsLike,
    image_size: Tuple[int, int],
    config: Optional[UndistortConfig] = None,
) -> UndistortMap:
    """Backward map from corrected output pixels to distorted source pixels."""
    intrinsics = coerce_intrinsics(intrinsics)
    config = config or UndistortConfig()
    start = time.perf_counter()
    width, height = int(image_size[0]), int(image_size[1])
    out_w, out_h = config.output_size or (width, height)
    new_k = estimate_new_camera_matrix(intrinsics, (width, height), config)
    fx_new, fy_new = new_k[0, 0], new_k[1, 1]
    cx_new, cy_new = new_k[0, 2], new_k[1, 2]
    k = intrinsics.distortion

    map_x = np.empty((out_h, out_w), dtype=np.float32)
    map_y = np.empty((out_h, out_w), dtype=np.float32)
    xs = (np.arange(out_w, dtype=np.float64) - cx_new) / fx_new
    for row0 in range(0, out_h, _ROW_BLOCK):
        rows = np.arange(row0, min(row0 + _ROW_BLOCK, out_h), dtype=np.float64)
        ys = (rows - cy_new) / fy_new
        x, y = np.meshgrid(xs, ys)
        r = np.hypot(x, y)
        theta_d = distort_theta(np.arctan(r), k)
        small = r < 1e-8
        scale = np.where(small, 1.0, theta_d / np.where(small, 1.0, r))
        map_x[row0 : row0 + len(rows)] = intrinsics.fx * scale * x + intrinsics.cx
        map_y[row0 : row0 + len(rows)] = intrinsics.fy * scale * y + intrinsics.cy

    valid = (map_x >= 0) & (map_x <= width - 1) & (map_y >= 0) & (map_y <= height - 1)
    log_performance(
        f"undistort map {out_w}x{out_h}",
        (time.perf_counter() - start) * 1000.0,
        threshold_ms=1000.0,
    )
    return UndistortMap(
        map_x=map_x,
        map_y=map_y,
        valid_mask=valid,
        new_camera_matrix=new_k,
        source_size=(width, height),
    )


def undistort_image(
    image: PixelBuffer,
    intrinsics: IntrinsicsLike,
    config: Optional[UndistortConfig] = None,
) -> PixelBuffer:
    """Return a new, undistorted copy of a fisheye image."""
    intrinsics = coerce_intrinsics(intrinsics)
    config = config or UndistortConfig()
    _check_image(image)
    height, width = image.shape[:2]
    undistort_map = build_undistort_map(intrinsics, (width, height), config)
    logger.debug(
        f"Undistorting {width}x{height} image, valid fraction {undistort_map.valid_fraction:.3f}"
    )
    return undistort_map.apply(
        image, border_value=config.border_value, interpolation=config.interpolation
    )


def build_distort_map(
    intrinsics: IntrinsicsLike,
    distorted_size: Tuple[int, int],
    config: Optional[UndistortConfig] = None,
    source_size: Optional[Tuple[int, int]] = None,
) -> UndistortMap:
    """Inverse of build_undistort_map: distorted pixels -> corrected-image pixels.

    ``source_size`` is the size of the corrected image being sampled and
    defaults to the output size the undistortion would produce.
    """
    intrinsics = coerce_intrinsics(intrinsics)
    config = config or UndistortConfig()
    width, height = int(distorted_size[0]), int(distorted_size[1])
    src_w, src_h = source_size or config.output_size or (width, height)
    new_k = estimate_new_camera_matrix(intrinsics, (width, height), config)

    u, v = np.meshgrid(np.arange(width, dtype=np.float64), np.arange(height, dtype=np.float64))
    xd = (u - intrinsics.cx) / intrinsics.fx
    yd = (v - intrinsics.cy) / intrinsics.fy
    theta_d = np.hypot(xd, yd)
    theta = undistort_theta(theta_d, intrinsics.distortion)
    inside = theta < np.radians(89.0)
    small = theta_d < 1e-8
    scale = np.where(small, 1.0, np.tan(np.where(inside, theta, 0.0)) / np.where(small, 1.0, theta_d))
    map_x = new_k[0, 0] * scale * xd + new_k[0, 2]
    map_y = new_k[1, 1] * scale * yd + new_k[1, 2]
    map_x = np.where(inside, map_x, -1.0).astype(np.float32)
    map_y = np.where(inside, map_y, -1.0).astype(np.float32)
    valid = inside & (map_x >= 0) & (map_x <= src_w - 1) & (map_y >= 0) & (map_y <= src_h - 1)
    return UndistortMap(
        map_x=map_x,
        map_y=map_y,
        valid_mask=valid,
        new_camera_matrix=new_k,
        source_size=(src_w, src_h),
    )


def distort_image(
    image: PixelBuffer,
    intrinsics: IntrinsicsLike,
    config: Optional[UndistortConfig] = None,
    distorted_size: Optional[Tuple[int, int]] = None,
) -> PixelBuffer:
    """Warp a corrected image back into the fisheye projection."""
    config = config or UndistortConfig()
    _check_image(image)
    height, width = image.shape[:2]
    distort_map = build_distort_map(
        intrinsics, distorted_size or (width, height), config, source_size=(width, height)
    )
    return distort_map.apply(
        image, border_value=config.border_value, interpolation=config.interpolation
    )


def _check_image(image: PixelBuffer) -> None:
    if not isinstance(image, np.ndarray) or image.ndim not in (2, 3) or image.size == 0:
        raise ValueError("Expected a non-empty 2D or 3D image array")
