"""Joint fisheye intrinsics and pose estimation by Levenberg-Marquardt.

Parameter vector layout::

    [fx, fy, cx, cy, k1, k2, k3, k4, rvec_0, tvec_0, rvec_1, tvec_1, ...]

Residuals are projected minus observed corner positions in pixels. Normal
equations are accumulated view by view in input order, so identical inputs
give bit-identical results.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from calib.calibrator import Calibrator
from calib.config import CalibrationConfig
from calib.fisheye_model import project_with_jacobian, rotation_to_rvec, undistort_points
from contracts import CalibrationResult, CheckerboardSpec, CornerSet, Intrinsics, Pose
from exceptions import DegenerateGeometryError, DidNotConvergeError, InsufficientSamplesError
from log_config.logger import get_logger, log_performance

logger = get_logger(__name__)

N_INTRINSICS = 8
N_POSE = 6


@dataclass
class _Normal:
    """Accumulated normal equations JᵀJ, Jᵀr and cost at one estimate."""

    jtj: np.ndarray
    jtr: np.ndarray
    cost: float


class FisheyeCalibrator(Calibrator):
    def __init__(self, config: Optional[CalibrationConfig] = None) -> None:
        self._config = config or CalibrationConfig()

    @property
    def config(self) -> CalibrationConfig:
        return self._config

    def calibrate(
        self,
        corner_sets: Sequence[CornerSet],
        board: CheckerboardSpec,
        image_size: Tuple[int, int],
    ) -> CalibrationResult:
        cfg = self._config
        start = time.perf_counter()
        views = list(corner_sets)
        if len(views) < cfg.min_views:
            raise InsufficientSamplesError(
                f"Need at least {cfg.min_views} views with a detected checkerboard, got {len(views)}",
                valid_views=len(views),
                required_views=cfg.min_views,
            )
        width, height = int(image_size[0]), int(image_size[1])
        if width <= 0 or height <= 0:
            raise ValueError(f"Image size must be positive, got {image_size}")
        for view in views:
            if view.board.corner_count != board.corner_count:
                raise ValueError(
                    f"Corner set for a {view.board.cols}x{view.board.rows} board passed "
                    f"to a {board.cols}x{board.rows} calibration"
                )

        object_points = board.object_points()
        observed = [view.points for view in views]

        initial = initial_intrinsics(width, height, cfg.assumed_fov_deg)
        params = np.empty(N_INTRINSICS + N_POSE * len(views), dtype=np.float64)
        params[:N_INTRINSICS] = initial.as_vector()
        for idx, points in enumerate(observed):
            rvec, tvec = self._initial_pose(object_points, points, initial)
            offset = N_INTRINSICS + N_POSE * idx
            params[offset : offset + 3] = rvec
            params[offset + 3 : offset + 6] = tvec
        logger.debug(
            f"Initial guess fx={initial.fx:.2f} cx={initial.cx:.2f} cy={initial.cy:.2f} "
            f"for {len(views)} views"
        )

        self._check_rank(params, object_points, observed)
        params, iterations, reason = self._optimize(params, object_points, observed)
        self._check_rank(params, object_points, observed)

        fx, fy = params[0], params[1]
        if not (fx > 0 and fy > 0):
            raise DegenerateGeometryError(
                f"Optimization produced non-positive focal lengths fx={fx:.4f}, fy={fy:.4f}"
            )
        intrinsics = Intrinsics.from_vector(params[:N_INTRINSICS])
        poses = []
        errors = []
        total_sq = 0.0
        total_points = 0
        for idx, points in enumerate(observed):
            rvec, tvec = _pose_slice(params, idx)
            poses.append(Pose(rvec=rvec.copy(), tvec=tvec.copy()))
            projected, _, _ = project_with_jacobian(
                object_points, rvec, tvec, params[:N_INTRINSICS], with_jacobian=False
            )
            sq = np.sum((projected - points) ** 2, axis=1)
            errors.append(float(math.sqrt(sq.mean())))
            total_sq += float(sq.sum())
            total_points += len(points)
        rms = math.sqrt(total_sq / total_points)

        log_performance(
            f"fisheye calibration ({len(views)} views)",
            (time.perf_counter() - start) * 1000.0,
            threshold_ms=5000.0,
        )
        logger.info(
            f"Calibrated {len(views)} views in {iterations} iterations ({reason}): "
            f"fx={intrinsics.fx:.3f} fy={intrinsics.fy:.3f} cx={intrinsics.cx:.3f} "
            f"cy={intrinsics.cy:.3f} rms={rms:.4f}px"
        )
        return CalibrationResult(
            intrinsics=intrinsics,
            poses=tuple(poses),
            per_view_errors_px=tuple(errors),
            rms_error_px=rms,
            image_size=(width, height),
            iterations=iterations,
            diagnostics={
                "initial_intrinsics": initial.as_vector().tolist(),
                "termination": reason,
                "sources": [view.source for view in views],
            },
        )

    # Initialization

    def _initial_pose(
        self,
        object_points: np.ndarray,
        image_points: np.ndarray,
        intrinsics: Intrinsics,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Planar pose from a homography in unwrapped (pinhole) coordinates."""
        normalized, valid = undistort_points(image_points, intrinsics)
        if int(valid.sum()) < 4:
            raise DegenerateGeometryError(
                "Fewer than 4 corners fall inside the assumed field of view"
            )
        H = estimate_homography(object_points[valid, :2], normalized[valid])
        rvec, tvec = decompose_homography(H)
        return self._refine_pose(object_points, image_points, intrinsics, rvec, tvec)

    def _refine_pose(
        self,
        object_points: np.ndarray,
        image_points: np.ndarray,
        intrinsics: Intrinsics,
        rvec: np.ndarray,
        tvec: np.ndarray,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """A few damped Gauss-Newton steps on one pose with intrinsics held fixed."""
        intr = intrinsics.as_vector()
        pose = np.concatenate([rvec, tvec])
        lam = self._config.initial_damping

        def residual(p: np.ndarray):
            uv, _, J = project_with_jacobian(object_points, p[:3], p[3:], intr)
            return (uv - image_points).reshape(-1), J

        r, J = residual(pose)
        cost = float(r @ r)
        for _ in range(self._config.pose_refine_iterations):
            jtj = J.T @ J
            jtr = J.T @ r
            try:
                delta = _damped_step(jtj, jtr, lam)
            except np.linalg.LinAlgError:
                break
            candidate = pose + delta
            r_new, J_new = residual(candidate)
            new_cost = float(r_new @ r_new)
            if math.isfinite(new_cost) and new_cost < cost:
                improvement = (cost - new_cost) / max(cost, 1e-300)
                pose, r, J, cost = candidate, r_new, J_new, new_cost
                lam = max(lam / 10.0, 1e-15)
                if improvement < 1e-8:
                    break
            else:
                lam *= 10.0
                if lam > 1e12:
                    break
        return pose[:3], pose[3:]

    # Joint refinement

    def _normal_equations(
        self,
        params: np.ndarray,
        object_points: np.ndarray,
        observed: List[np.ndarray],
    ) -> _Normal:
        n_params = len(params)
        jtj = np.zeros((n_params, n_params), dtype=np.float64)
        jtr = np.zeros(n_params, dtype=np.float64)
        cost = 0.0
        intr = params[:N_INTRINSICS]
        for idx, points in enumerate(observed):
            rvec, tvec = _pose_slice(params, idx)
            uv, J_intr, J_pose = project_with_jacobian(object_points, rvec, tvec, intr)
            r = (uv - points).reshape(-1)
            off = N_INTRINSICS + N_POSE * idx
            pose_block = slice(off, off + N_POSE)
            jtj[:N_INTRINSICS, :N_INTRINSICS] += J_intr.T @ J_intr
            cross = J_intr.T @ J_pose
            jtj[:N_INTRINSICS, pose_block] = cross
            jtj[pose_block, :N_INTRINSICS] = cross.T
            jtj[pose_block, pose_block] = J_pose.T @ J_pose
            jtr[:N_INTRINSICS] += J_intr.T @ r
            jtr[pose_block] = J_pose.T @ r
            cost += float(r @ r)
        return _Normal(jtj=jtj, jtr=jtr, cost=cost)

    def _cost(self, params: np.ndarray, object_points: np.ndarray, observed: List[np.ndarray]) -> float:
        intr = params[:N_INTRINSICS]
        cost = 0.0
        for idx, points in enumerate(observed):
            rvec, tvec = _pose_slice(params, idx)
            uv, _, _ = project_with_jacobian(object_points, rvec, tvec, intr, with_jacobian=False)
            r = uv - points
            cost += float(np.sum(r * r))
        return cost

    def _optimize(
        self,
        params: np.ndarray,
        object_points: np.ndarray,
        observed: List[np.ndarray],
    ) -> Tuple[np.ndarray, int, str]:
        cfg = self._config
        lam = cfg.initial_damping
        normal = self._normal_equations(params, object_points, observed)
        if not math.isfinite(normal.cost):
            raise DidNotConvergeError("Initial reprojection error is not finite", iterations=0)

        stalled = 0
        iteration = 0
        reason = "max_iterations"
        n_residuals = 2 * len(object_points) * len(observed)
        while iteration < cfg.max_iterations:
            iteration += 1
            if normal.cost <= 1e-20 * n_residuals:
                reason = "zero_residual"
                break
            try:
                delta = _damped_step(normal.jtj, normal.jtr, lam)
            except np.linalg.LinAlgError as e:
                raise DegenerateGeometryError(f"Normal equations are singular: {e}")

            step_norm = float(np.linalg.norm(delta))
            small_step = step_norm <= cfg.step_tolerance * (float(np.linalg.norm(params)) + cfg.step_tolerance)
            candidate = params + delta
            new_cost = math.inf
            if candidate[0] > 0 and candidate[1] > 0:
                new_cost = self._cost(candidate, object_points, observed)

            if math.isfinite(new_cost) and new_cost < normal.cost:
                improvement = (normal.cost - new_cost) / normal.cost
                params = candidate
                lam = max(lam / 10.0, 1e-15)
                stalled = 0
                logger.debug(
                    f"iter {iteration}: cost {new_cost:.6e} (-{improvement:.3e}), lambda {lam:.1e}"
                )
                normal = self._normal_equations(params, object_points, observed)
                if improvement < cfg.tolerance:
                    reason = "tolerance"
                    break
                if small_step:
                    reason = "step_tolerance"
                    break
            else:
                if math.isfinite(new_cost) and new_cost - normal.cost <= cfg.tolerance * normal.cost:
                    reason = "tolerance"
                    break
                lam *= 10.0
                stalled += 1
                if small_step:
                    reason = "step_tolerance"
                    break
                if stalled >= cfg.max_stalled_iterations:
                    raise DidNotConvergeError(
                        f"Reprojection error did not decrease for {stalled} consecutive iterations "
                        f"(cost {normal.cost:.6e})",
                        iterations=iteration,
                    )
        return params, iteration, reason

    def _check_rank(
        self,
        params: np.ndarray,
        object_points: np.ndarray,
        observed: List[np.ndarray],
    ) -> None:
        """Raise DegenerateGeometryError if the stacked Jacobian is rank deficient."""
        intr = params[:N_INTRINSICS]
        n_rows = 2 * len(object_points)
        J = np.zeros((n_rows * len(observed), len(params)), dtype=np.float64)
        for idx in range(len(observed)):
            rvec, tvec = _pose_slice(params, idx)
            _, J_intr, J_pose = project_with_jacobian(object_points, rvec, tvec, intr)
            rows = slice(idx * n_rows, (idx + 1) * n_rows)
            off = N_INTRINSICS + N_POSE * idx
            J[rows, :N_INTRINSICS] = J_intr
            J[rows, off : off + N_POSE] = J_pose
        if not np.all(np.isfinite(J)):
            raise DegenerateGeometryError("Jacobian contains non-finite values")
        norms = np.linalg.norm(J, axis=0)
        if np.any(norms == 0):
            raise DegenerateGeometryError("A camera parameter has no effect on any corner")
        singular = np.linalg.svd(J / norms, compute_uv=False)
        ratio = float(singular[-1] / singular[0])
        if ratio < self._config.rank_tolerance:
            raise DegenerateGeometryError(
                f"Views do not constrain all camera parameters (singular value ratio {ratio:.2e}); "
                "capture the board at more varied angles"
            )


def initial_intrinsics(width: int, height: int, fov_deg: float = 180.0) -> Intrinsics:
    """Principal point at the centre, focal length from an assumed field of view."""
    focal = max(width, height) / math.radians(fov_deg)
    return Intrinsics(
        fx=focal,
        fy=focal,
        cx=(width - 1) / 2.0,
        cy=(height - 1) / 2.0,
    )


def estimate_homography(src: np.ndarray, dst: np.ndarray) -> np.ndarray:
    """Normalized DLT homography mapping src (n, 2) to dst (n, 2)."""
    src = np.asarray(src, dtype=np.float64)
    dst = np.asarray(dst, dtype=np.float64)
    T_src = _normalizing_transform(src)
    T_dst = _normalizing_transform(dst)
    s = _apply(T_src, src)
    d = _apply(T_dst, dst)
    n = len(s)
    A = np.zeros((2 * n, 9), dtype=np.float64)
    A[0::2, 0:2] = s
    A[0::2, 2] = 1.0
    A[0::2, 6:8] = -d[:, 0:1] * s
    A[0::2, 8] = -d[:, 0]
    A[1::2, 3:5] = s
    A[1::2, 5] = 1.0
    A[1::2, 6:8] = -d[:, 1:2] * s
    A[1::2, 8] = -d[:, 1]
    _, singular, vt = np.linalg.svd(A)
    if len(singular) < 9 or singular[-2] < 1e-10 * singular[0]:
        raise DegenerateGeometryError(
            "Board corners are collinear or coincident; cannot estimate a planar pose"
        )
    Hn = vt[-1].reshape(3, 3)
    H = np.linalg.inv(T_dst) @ Hn @ T_src
    return H / H[2, 2] if abs(H[2, 2]) > 1e-12 else H


def decompose_homography(H: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Rotation vector and translation of a plane z=0 from its homography."""
    h1, h2, h3 = H[:, 0], H[:, 1], H[:, 2]
    lam = 2.0 / (np.linalg.norm(h1) + np.linalg.norm(h2))
    r1 = h1 * lam
    r2 = h2 * lam
    t = h3 * lam
    if t[2] < 0:
        r1, r2, t = -r1, -r2, -t
    r3 = np.cross(r1, r2)
    R = np.stack([r1, r2, r3], axis=1)
    U, _, Vt = np.linalg.svd(R)
    R = U @ Vt
    if np.linalg.det(R) < 0:
        U[:, 2] *= -1.0
        R = U @ Vt
    return rotation_to_rvec(R), t


def calibrate(
    corner_sets: Sequence[CornerSet],
    board: CheckerboardSpec,
    image_width: int,
    image_height: int,
    config: Optional[CalibrationConfig] = None,
) -> CalibrationResult:
    """Estimate fisheye intrinsics from the corner sets of several views."""
    return FisheyeCalibrator(config).calibrate(corner_sets, board, (image_width, image_height))


def _damped_step(jtj: np.ndarray, jtr: np.ndarray, lam: float) -> np.ndarray:
    """Solve (JᵀJ + λ·diag(JᵀJ)) δ = -Jᵀr."""
    diag = np.diag(jtj).copy()
    diag[diag <= 0] = 1e-12
    A = jtj + np.diag(lam * diag)
    return -np.linalg.solve(A, jtr)


def _pose_slice(params: np.ndarray, idx: int) -> Tuple[np.ndarray, np.ndarray]:
    off = N_INTRINSICS + N_POSE * idx
    return params[off : off + 3], params[off + 3 : off + 6]


def _normalizing_transform(points: np.ndarray) -> np.ndarray:
    centroid = points.mean(axis=0)
    spread = np.sqrt(((points - centroid) ** 2).sum(axis=1)).mean()
    scale = math.sqrt(2.0) / spread if spread > 1e-12 else 1.0
    return np.array(
        [[scale, 0.0, -scale * centroid[0]], [0.0, scale, -scale * centroid[1]], [0.0, 0.0, 1.0]]
    )


def _apply(T: np.ndarray, points: np.ndarray) -> np.ndarray:
    return points @ T[:2, :2].T + T[:2, 2]
