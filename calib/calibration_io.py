"""Persist calibration results as versioned JSON."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

from contracts import CalibrationResult, Intrinsics
from contracts.versioning import make_envelope, open_envelope
from exceptions import InvalidIntrinsicsError


def calibration_to_dict(result: CalibrationResult) -> Dict[str, Any]:
    return {
        "image_size": list(result.image_size),
        "K": result.camera_matrix.tolist(),
        "D": result.distortion.tolist(),
        "rms_error_px": result.rms_error_px,
        "per_view_errors_px": list(result.per_view_errors_px),
        "iterations": result.iterations,
    }


def save_calibration(path: Path, result: CalibrationResult) -> None:
    path.write_text(json.dumps(make_envelope(calibration_to_dict(result)), indent=2))


def load_intrinsics(path: Path) -> Intrinsics:
    """Read K and D back from a saved calibration.

    Raises:
        InvalidIntrinsicsError: If the file does not hold a usable calibration
    """
    try:
        payload = open_envelope(json.loads(path.read_text()))
        return Intrinsics.from_matrices(payload["K"], payload["D"])
    except (OSError, ValueError, KeyError, TypeError) as e:
        raise InvalidIntrinsicsError(f"Cannot load calibration from {path}: {e}")
