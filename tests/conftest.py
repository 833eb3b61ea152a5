"""Shared synthetic fisheye camera, board and rendered sample views."""

from __future__ import annotations

import cv2
import pytest

from calib.synthetic import look_at_pose, render_views
from contracts import CheckerboardSpec, Intrinsics

IMAGE_SIZE = (640, 480)

RENDER_INTRINSICS = Intrinsics(
    fx=200.0, fy=200.0, cx=319.5, cy=239.5, k1=0.05, k2=-0.02, k3=0.005, k4=-0.001
)

# (tilt_x, tilt_y, roll, offset) at a board distance of 6 squares
RENDER_VIEWS = [
    (0.0, 0.0, 0.0, (0.0, 0.0)),
    (20.0, 0.0, 5.0, (-1.0, 0.0)),
    (-20.0, 10.0, -5.0, (1.0, 0.5)),
    (10.0, 25.0, 8.0, (0.0, -0.8)),
    (-15.0, -25.0, -6.0, (0.5, 0.8)),
]


@pytest.fixture(scope="session")
def board() -> CheckerboardSpec:
    return CheckerboardSpec(cols=9, rows=6)


@pytest.fixture(scope="session")
def render_poses(board):
    return [
        look_at_pose(board, 6.0, tilt_x, tilt_y, roll, offset)
        for tilt_x, tilt_y, roll, offset in RENDER_VIEWS
    ]


@pytest.fixture(scope="session")
def rendered_views(board, render_poses):
    """Grayscale uint8 renders of the 9x6 board, one per pose."""
    return render_views(board, RENDER_INTRINSICS, render_poses, IMAGE_SIZE)


@pytest.fixture(scope="session")
def encoded_samples(rendered_views):
    """The rendered views as PNG bytes."""
    samples = []
    for image in rendered_views:
        ok, buffer = cv2.imencode(".png", image)
        assert ok
        samples.append(buffer.tobytes())
    return samples


@pytest.fixture(scope="session")
def image_size():
    return IMAGE_SIZE


@pytest.fixture(scope="session")
def render_intrinsics() -> Intrinsics:
    return RENDER_INTRINSICS
