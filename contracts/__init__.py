"""Shared data contracts for fisheye calibration."""

from .types import (
    CalibrationResult,
    CheckerboardSpec,
    CornerSet,
    Intrinsics,
    PixelBuffer,
    Pose,
    UndistortConfig,
)

__all__ = [
    "CalibrationResult",
    "CheckerboardSpec",
    "CornerSet",
    "Intrinsics",
    "PixelBuffer",
    "Pose",
    "UndistortConfig",
]
