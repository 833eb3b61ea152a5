"""Calibration interface for camera intrinsics."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Sequence, Tuple

from contracts import CalibrationResult, CheckerboardSpec, CornerSet


class Calibrator(ABC):
    @abstractmethod
    def calibrate(
        self,
        corner_sets: Sequence[CornerSet],
        board: CheckerboardSpec,
        image_size: Tuple[int, int],
    ) -> CalibrationResult:
        """Compute camera intrinsics and per-view poses from detected corners."""
