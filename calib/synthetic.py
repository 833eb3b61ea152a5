"""Synthetic checkerboard views through a known fisheye camera.

Used to generate ground-truth corner sets and rendered sample images for
tests and demos.
"""

from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

import numpy as np

from calib.fisheye_model import project_points, rodrigues, rotation_to_rvec, unproject_rays
from contracts import CheckerboardSpec, CornerSet, Intrinsics, Pose

_ROW_BLOCK = 48


def look_at_pose(
    board: CheckerboardSpec,
    distance: float,
    tilt_x_deg: float = 0.0,
    tilt_y_deg: float = 0.0,
    roll_deg: float = 0.0,
    offset: Tuple[float, float] = (0.0, 0.0),
) -> Pose:
    """Pose placing the board centre at (offset, distance) in the camera frame.

    Tilts rotate the board about its own x and y axes, roll about the optical
    axis.
    """
    rx, ry, rz = np.radians([tilt_x_deg, tilt_y_deg, roll_deg])
    R = (
        rodrigues(np.array([0.0, 0.0, rz]))
        @ rodrigues(np.array([0.0, ry, 0.0]))
        @ rodrigues(np.array([rx, 0.0, 0.0]))
    )
    center = np.array(
        [(board.cols - 1) * board.square_size / 2.0, (board.rows - 1) * board.square_size / 2.0, 0.0]
    )
    target = np.array([offset[0], offset[1], distance], dtype=np.float64)
    return Pose(rvec=rotation_to_rvec(R), tvec=target - R @ center)


def default_poses(board: CheckerboardSpec, distance: float) -> List[Pose]:
    """Eight varied views covering the centre and the periphery of the lens."""
    spread = max(board.cols, board.rows) * board.square_size * 0.6
    settings = [
        (0.0, 0.0, 0.0, (0.0, 0.0)),
        (25.0, 0.0, 5.0, (-spread, 0.0)),
        (-25.0, 10.0, -5.0, (spread, 0.0)),
        (10.0, 30.0, 10.0, (0.0, -spread * 0.7)),
        (-10.0, -30.0, -10.0, (0.0, spread * 0.7)),
        (30.0, 20.0, 0.0, (-spread, -spread * 0.6)),
        (-20.0, -25.0, 8.0, (spread, spread * 0.6)),
        (15.0, -15.0, -8.0, (spread * 0.5, -spread * 0.5)),
    ]
    return [
        look_at_pose(board, distance, tilt_x, tilt_y, roll, offset)
        for tilt_x, tilt_y, roll, offset in settings
    ]


def project_corner_set(
    board: CheckerboardSpec,
    intrinsics: Intrinsics,
    pose: Pose,
    image_size: Tuple[int, int],
    noise_px: float = 0.0,
    rng: Optional[np.random.Generator] = None,
) -> CornerSet:
    """Exact (optionally noisy) corner set of the board seen from a pose."""
    points = project_points(board.object_points(), pose.rvec, pose.tvec, intrinsics)
    if noise_px > 0:
        rng = rng or np.random.default_rng(0)
        points = points + rng.normal(0.0, noise_px, size=points.shape)
    return CornerSet(board=board, points=points, image_size=image_size, source="synthetic")


def render_checkerboard(
    board: CheckerboardSpec,
    intrinsics: Intrinsics,
    pose: Pose,
    image_size: Tuple[int, int],
    supersample: int = 3,
    background: int = 128,
) -> np.ndarray:
    """Render an 8-bit grayscale view of the board with a one-square white margin.

    Each pixel averages ``supersample**2`` rays, so corner positions match
    ``project_corner_set`` in pixel-centre coordinates.
    """
    width, height = image_size
    R = pose.rotation_matrix()
    t = pose.tvec
    Rt_t = R.T @ t
    sq = board.square_size
    offsets = (np.arange(supersample) + 0.5) / supersample - 0.5
    image = np.empty((height, width), dtype=np.uint8)
    xs = np.arange(width, dtype=np.float64)

    for row0 in range(0, height, _ROW_BLOCK):
        rows = np.arange(row0, min(row0 + _ROW_BLOCK, height), dtype=np.float64)
        acc = np.zeros((len(rows), width), dtype=np.float64)
        for oy in offsets:
            for ox in offsets:
                u, v = np.meshgrid(xs + ox, rows + oy)
                rays = unproject_rays(np.stack([u.ravel(), v.ravel()], axis=1), intrinsics)
                acc += _shade(rays, R, Rt_t, board, sq, background).reshape(u.shape)
        image[row0 : row0 + len(rows)] = np.clip(
            np.round(acc / (supersample * supersample)), 0, 255
        ).astype(np.uint8)
    return image


def render_views(
    board: CheckerboardSpec,
    intrinsics: Intrinsics,
    poses: Sequence[Pose],
    image_size: Tuple[int, int],
    supersample: int = 3,
) -> List[np.ndarray]:
    return [render_checkerboard(board, intrinsics, pose, image_size, supersample) for pose in poses]


def _shade(
    rays: np.ndarray,
    R: np.ndarray,
    Rt_t: np.ndarray,
    board: CheckerboardSpec,
    sq: float,
    background: int,
) -> np.ndarray:
    board_dirs = rays @ R  # rows are R^T d
    denom = board_dirs[:, 2]
    safe = np.where(np.abs(denom) < 1e-12, 1e-12, denom)
    s = Rt_t[2] / safe
    hits = (s > 0) & (rays[:, 2] > np.cos(np.radians(89.0)))
    X = s * board_dirs[:, 0] - Rt_t[0]
    Y = s * board_dirs[:, 1] - Rt_t[1]
    gx = np.where(hits, X / sq, -10.0)
    gy = np.where(hits, Y / sq, -10.0)

    values = np.full(len(rays), float(background))
    margin = hits & (gx >= -2.0) & (gx < board.cols + 1.0) & (gy >= -2.0) & (gy < board.rows + 1.0)
    values[margin] = 255.0
    squares = hits & (gx >= -1.0) & (gx < board.cols) & (gy >= -1.0) & (gy < board.rows)
    parity = (np.floor(gx).astype(np.int64) + np.floor(gy).astype(np.int64)) % 2
    values[squares & (parity == 0)] = 0.0
    values[squares & (parity != 0)] = 255.0
    return values
