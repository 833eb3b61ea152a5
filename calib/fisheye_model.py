"""Equidistant fisheye camera model with analytic Jacobians.

A camera-frame point (X, Y, Z) is projected as::

    a = X / Z, b = Y / Z, r = sqrt(a^2 + b^2), theta = atan(r)
    theta_d = theta * (1 + k1*theta^2 + k2*theta^4 + k3*theta^6 + k4*theta^8)
    u = fx * (theta_d / r) * a + cx
    v = fy * (theta_d / r) * b + cy

Skew is fixed at zero.
"""

from __future__ import annotations

from typing import Tuple

import cv2
import numpy as np

from contracts import Intrinsics

_EPS = 1e-8
_MIN_DEPTH = 1e-9


def rodrigues(rvec: np.ndarray) -> np.ndarray:
    """Rotation vector -> 3x3 rotation matrix."""
    R, _ = cv2.Rodrigues(np.asarray(rvec, dtype=np.float64).reshape(3, 1))
    return R


def rotation_to_rvec(R: np.ndarray) -> np.ndarray:
    """3x3 rotation matrix -> rotation vector."""
    rvec, _ = cv2.Rodrigues(np.asarray(R, dtype=np.float64))
    return rvec.reshape(3)


def _skew(v: np.ndarray) -> np.ndarray:
    return np.array(
        [[0.0, -v[2], v[1]], [v[2], 0.0, -v[0]], [-v[1], v[0], 0.0]],
        dtype=np.float64,
    )


def rotation_derivatives(rvec: np.ndarray) -> np.ndarray:
    """Derivatives dR/dv_i of the Rodrigues map, shape (3, 3, 3).

    Uses the closed form of Gallego & Yezzi (2015):
    dR/dv_i = (v_i [v]x + [v x (I - R) e_i]x) R / |v|^2
    which reduces to [e_i]x at the identity.
    """
    v = np.asarray(rvec, dtype=np.float64).reshape(3)
    eye = np.eye(3)
    norm_sq = float(v @ v)
    if norm_sq < 1e-16:
        return np.stack([_skew(eye[i]) for i in range(3)])
    R = rodrigues(v)
    vx = _skew(v)
    out = np.empty((3, 3, 3), dtype=np.float64)
    for i in range(3):
        term = v[i] * vx + _skew(np.cross(v, (eye - R)[:, i]))
        out[i] = term @ R / norm_sq
    return out


def distort_theta(theta: np.ndarray, k: np.ndarray) -> np.ndarray:
    """Forward radial model theta -> theta_d."""
    t2 = theta * theta
    k1, k2, k3, k4 = k
    return theta * (1.0 + t2 * (k1 + t2 * (k2 + t2 * (k3 + t2 * k4))))


def undistort_theta(theta_d: np.ndarray, k: np.ndarray, iterations: int = 10) -> np.ndarray:
    """Invert theta_d = theta * (1 + k1*theta^2 + ...) by Newton iteration."""
    k1, k2, k3, k4 = k
    theta_d = np.clip(np.asarray(theta_d, dtype=np.float64), -np.pi / 2, np.pi / 2)
    theta = theta_d.copy()
    if not np.any(k):
        return theta
    for _ in range(iterations):
        t2 = theta * theta
        t4 = t2 * t2
        t6 = t4 * t2
        t8 = t6 * t2
        f = theta * (1.0 + k1 * t2 + k2 * t4 + k3 * t6 + k4 * t8) - theta_d
        df = 1.0 + 3.0 * k1 * t2 + 5.0 * k2 * t4 + 7.0 * k3 * t6 + 9.0 * k4 * t8
        df = np.where(np.abs(df) < _EPS, _EPS, df)
        step = f / df
        theta = theta - step
        if np.all(np.abs(step) < 1e-12):
            break
    return theta


def project_points(
    object_points: np.ndarray,
    rvec: np.ndarray,
    tvec: np.ndarray,
    intrinsics: Intrinsics,
) -> np.ndarray:
    """Project board points through a pose and the fisheye model to pixels."""
    uv, _, _ = project_with_jacobian(
        object_points, rvec, tvec, intrinsics.as_vector(), with_jacobian=False
    )
    return uv


def project_with_jacobian(
    object_points: np.ndarray,
    rvec: np.ndarray,
    tvec: np.ndarray,
    intrinsic_vector: np.ndarray,
    with_jacobian: bool = True,
) -> Tuple[np.ndarray, np.ndarray | None, np.ndarray | None]:
    """Project points and optionally return Jacobians.

    Args:
        object_points: (n, 3) board coordinates
        rvec: Rotation vector of the pose
        tvec: Translation of the pose
        intrinsic_vector: [fx, fy, cx, cy, k1, k2, k3, k4]
        with_jacobian: Skip derivative work when False

    Returns:
        uv (n, 2); d(uv)/d(intrinsics) (2n, 8); d(uv)/d(rvec, tvec) (2n, 6).
        Jacobian rows are interleaved (u0, v0, u1, v1, ...).
    """
    fx, fy, cx, cy = intrinsic_vector[:4]
    k = np.asarray(intrinsic_vector[4:8], dtype=np.float64)
    k1, k2, k3, k4 = k
    X = np.asarray(object_points, dtype=np.float64).reshape(-1, 3)
    R = rodrigues(rvec)
    Xc = X @ R.T + np.asarray(tvec, dtype=np.float64).reshape(1, 3)

    z = np.maximum(Xc[:, 2], _MIN_DEPTH)
    a = Xc[:, 0] / z
    b = Xc[:, 1] / z
    r2 = a * a + b * b
    r = np.sqrt(r2)
    theta = np.arctan(r)
    t2 = theta * theta
    t4 = t2 * t2
    t6 = t4 * t2
    t8 = t4 * t4
    theta_d = theta * (1.0 + k1 * t2 + k2 * t4 + k3 * t6 + k4 * t8)

    small = r < _EPS
    safe_r = np.where(small, 1.0, r)
    scale = np.where(small, 1.0, theta_d / safe_r)
    xd = scale * a
    yd = scale * b

    n = len(X)
    uv = np.empty((n, 2), dtype=np.float64)
    uv[:, 0] = fx * xd + cx
    uv[:, 1] = fy * yd + cy
    if not with_jacobian:
        return uv, None, None

    # Intrinsics
    ratio = np.where(small, 1.0, theta / safe_r)  # theta / r
    J_intr = np.zeros((2 * n, 8), dtype=np.float64)
    J_intr[0::2, 0] = xd
    J_intr[1::2, 1] = yd
    J_intr[0::2, 2] = 1.0
    J_intr[1::2, 3] = 1.0
    theta_pow = t2
    for j in range(4):
        # d(theta_d)/dk_j = theta^(2j+3); divided by r gives ratio * theta^(2j+2)
        factor = ratio * theta_pow
        J_intr[0::2, 4 + j] = fx * a * factor
        J_intr[1::2, 4 + j] = fy * b * factor
        theta_pow = theta_pow * t2

    # Normalized coordinates -> distorted coordinates
    dtheta_d = 1.0 + 3.0 * k1 * t2 + 5.0 * k2 * t4 + 7.0 * k3 * t6 + 9.0 * k4 * t8
    dtheta_dr = 1.0 / (1.0 + r2)
    g = np.where(
        small,
        2.0 * (k1 - 1.0 / 3.0),
        (dtheta_d * dtheta_dr * safe_r - theta_d) / (safe_r * safe_r * safe_r),
    )
    dxd_da = scale + a * a * g
    dxd_db = a * b * g
    dyd_da = dxd_db
    dyd_db = scale + b * b * g

    # Normalized coordinates -> camera point
    inv_z = 1.0 / z
    da = np.stack([inv_z, np.zeros(n), -a * inv_z], axis=1)
    db = np.stack([np.zeros(n), inv_z, -b * inv_z], axis=1)
    du_dXc = fx * (dxd_da[:, None] * da + dxd_db[:, None] * db)
    dv_dXc = fy * (dyd_da[:, None] * da + dyd_db[:, None] * db)

    # Camera point -> pose
    dR = rotation_derivatives(rvec)
    dXc_drot = np.stack([X @ dR[i].T for i in range(3)], axis=2)  # (n, 3, 3)
    J_pose = np.zeros((2 * n, 6), dtype=np.float64)
    J_pose[0::2, :3] = np.einsum("nk,nki->ni", du_dXc, dXc_drot)
    J_pose[1::2, :3] = np.einsum("nk,nki->ni", dv_dXc, dXc_drot)
    J_pose[0::2, 3:] = du_dXc
    J_pose[1::2, 3:] = dv_dXc
    return uv, J_intr, J_pose


def undistort_points(points_px: np.ndarray, intrinsics: Intrinsics) -> Tuple[np.ndarray, np.ndarray]:
    """Map distorted pixels to normalized pinhole coordinates (x/z, y/z).

    Returns:
        (points (n, 2), valid mask) where invalid points lie at or beyond 90
        degrees from the optical axis.
    """
    pts = np.asarray(points_px, dtype=np.float64).reshape(-1, 2)
    xd = (pts[:, 0] - intrinsics.cx) / intrinsics.fx
    yd = (pts[:, 1] - intrinsics.cy) / intrinsics.fy
    theta_d = np.hypot(xd, yd)
    theta = undistort_theta(theta_d, intrinsics.distortion)
    valid = (theta >= 0.0) & (theta < np.pi / 2 - 1e-6)
    safe_theta = np.where(valid, theta, 0.0)
    small = theta_d < _EPS
    scale = np.where(small, 1.0, np.tan(safe_theta) / np.where(small, 1.0, theta_d))
    out = np.stack([xd * scale, yd * scale], axis=1)
    return out, valid


def unproject_rays(points_px: np.ndarray, intrinsics: Intrinsics) -> np.ndarray:
    """Map distorted pixels to unit-length viewing rays, shape (n, 3)."""
    pts = np.asarray(points_px, dtype=np.float64).reshape(-1, 2)
    xd = (pts[:, 0] - intrinsics.cx) / intrinsics.fx
    yd = (pts[:, 1] - intrinsics.cy) / intrinsics.fy
    theta_d = np.hypot(xd, yd)
    theta = undistort_theta(theta_d, intrinsics.distortion)
    small = theta_d < _EPS
    safe_d = np.where(small, 1.0, theta_d)
    sin_t = np.sin(theta)
    cos_phi = np.where(small, 1.0, xd / safe_d)
    sin_phi = np.where(small, 0.0, yd / safe_d)
    return np.stack([sin_t * cos_phi, sin_t * sin_phi, np.cos(theta)], axis=1)
