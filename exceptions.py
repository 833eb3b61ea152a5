"""Custom exception classes for fisheye calibration."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class DetectionFailureReason(str, Enum):
    PATTERN_NOT_FOUND = "PatternNotFound"
    CORNER_COUNT_MISMATCH = "CornerCountMismatch"


class CalibrationFailureReason(str, Enum):
    INSUFFICIENT_SAMPLES = "InsufficientSamples"
    DID_NOT_CONVERGE = "DidNotConverge"
    DEGENERATE_GEOMETRY = "DegenerateGeometry"


class FisheyeError(Exception):
    """Base exception for all fisheye calibration errors."""

    pass


class DetectionFailure(FisheyeError):
    """Raised when a checkerboard cannot be located in one sample image."""

    def __init__(
        self,
        message: str,
        reason: DetectionFailureReason,
        found_corners: int = 0,
    ):
        self.reason = reason
        self.found_corners = found_corners
        super().__init__(message)


class CalibrationFailure(FisheyeError):
    """Base exception for calibration-related errors."""

    reason: CalibrationFailureReason

    def __init__(self, message: str, reason: Optional[CalibrationFailureReason] = None):
        if reason is not None:
            self.reason = reason
        super().__init__(message)


class InsufficientSamplesError(CalibrationFailure):
    """Raised when too few valid views are available to calibrate."""

    reason = CalibrationFailureReason.INSUFFICIENT_SAMPLES

    def __init__(self, message: str, valid_views: int = 0, required_views: int = 3):
        self.valid_views = valid_views
        self.required_views = required_views
        super().__init__(message)


class DidNotConvergeError(CalibrationFailure):
    """Raised when the optimizer stops reducing the reprojection error."""

    reason = CalibrationFailureReason.DID_NOT_CONVERGE

    def __init__(self, message: str, iterations: int = 0):
        self.iterations = iterations
        super().__init__(message)


class DegenerateGeometryError(CalibrationFailure):
    """Raised when the views do not constrain the camera parameters."""

    reason = CalibrationFailureReason.DEGENERATE_GEOMETRY


class ImageCodecError(FisheyeError):
    """Base exception for image encode/decode errors."""

    pass


class ImageDecodeError(ImageCodecError):
    """Raised when an image buffer cannot be decoded."""

    def __init__(self, message: str, source: Optional[str] = None):
        self.source = source
        super().__init__(message)


class ImageEncodeError(ImageCodecError):
    """Raised when an image cannot be encoded in the requested format."""

    pass


class UndistortionFailure(FisheyeError):
    """Base exception for undistortion errors."""

    pass


class InvalidIntrinsicsError(UndistortionFailure):
    """Raised when K or D are structurally invalid."""

    pass


class ConfigError(FisheyeError):
    """Base exception for configuration errors."""

    pass


class InvalidConfigError(ConfigError):
    """Raised when configuration file is invalid or corrupted."""

    pass


class ConfigValidationError(ConfigError):
    """Raised when configuration fails schema validation."""

    def __init__(self, message: str, validation_errors: Optional[list] = None):
        self.validation_errors = validation_errors or []
        super().__init__(message)
