"""Rectification module."""

from .fisheye_rectifier import (
    FisheyeRectifier,
    UndistortMap,
    build_distort_map,
    build_undistort_map,
    distort_image,
    estimate_new_camera_matrix,
    undistort_image,
)
from .rectifier import Rectifier

__all__ = [
    "Rectifier",
    "FisheyeRectifier",
    "UndistortMap",
    "build_distort_map",
    "build_undistort_map",
    "distort_image",
    "estimate_new_camera_matrix",
    "undistort_image",
]
