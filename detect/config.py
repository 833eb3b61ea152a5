from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class CheckerboardDetectorConfig:
    smoothing_sigmas: Tuple[float, ...] = (1.0, 2.0, 3.5)
    response_threshold: float = 0.03  # fraction of the strongest saddle response
    max_candidates: int = 1000
    ring_samples: int = 32
    min_ring_contrast: float = 0.2
    grid_tolerance: float = 0.4  # fraction of the local grid step
    max_seeds: int = 25
    subpix_half_window: int = 5
    subpix_max_iterations: int = 30
    subpix_epsilon: float = 0.01
