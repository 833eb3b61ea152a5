"""Corner detector interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from contracts import CheckerboardSpec, CornerSet, PixelBuffer


class CornerDetector(ABC):
    @abstractmethod
    def detect(
        self,
        image: PixelBuffer,
        board: CheckerboardSpec,
        source: Optional[str] = None,
    ) -> CornerSet:
        """Locate the board's interior corners, raising DetectionFailure if absent."""
