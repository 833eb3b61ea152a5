"""Rectification interface."""

from __future__ import annotations

from abc import ABC, abstractmethod

from contracts import PixelBuffer


class Rectifier(ABC):
    @abstractmethod
    def rectify(self, image: PixelBuffer) -> PixelBuffer:
        """Return a corrected copy of an input image."""
