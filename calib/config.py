from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class CalibrationConfig:
    min_views: int = 3
    max_iterations: int = 100
    tolerance: float = 1e-10  # relative cost reduction of an accepted step
    step_tolerance: float = 1e-12  # step norm relative to the parameter norm
    max_stalled_iterations: int = 20
    initial_damping: float = 1e-3
    rank_tolerance: float = 1e-6  # smallest/largest singular value, column-normalized Jacobian
    pose_refine_iterations: int = 20
    assumed_fov_deg: float = 180.0
