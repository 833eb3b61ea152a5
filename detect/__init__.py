"""Detection module."""

from .checkerboard import CheckerboardDetector, detect_corners, detect_many
from .config import CheckerboardDetectorConfig
from .detector import CornerDetector

__all__ = [
    "CornerDetector",
    "CheckerboardDetector",
    "CheckerboardDetectorConfig",
    "detect_corners",
    "detect_many",
]
