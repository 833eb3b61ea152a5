"""Calibration module."""

from .calibrator import Calibrator
from .config import CalibrationConfig
from .fisheye_calibrator import FisheyeCalibrator, calibrate

__all__ = ["Calibrator", "CalibrationConfig", "FisheyeCalibrator", "calibrate"]
