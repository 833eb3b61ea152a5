"""Calibrate and undistort on encoded image buffers.

This is the boundary the command line (or any other host) talks to: encoded
bytes in, camera parameters or encoded bytes out. Decoding failures and
checkerboard detection failures only drop the affected sample; solver and
undistortion failures propagate unchanged.
"""

from __future__ import annotations

import dataclasses
from typing import Any, Dict, List, Mapping, Optional, Sequence

from app.codec import decode_image, encode_image
from calib.fisheye_calibrator import FisheyeCalibrator
from configs.settings import AppConfig, default_config
from contracts import CalibrationResult, CheckerboardSpec, CornerSet, Intrinsics, UndistortConfig
from detect.checkerboard import detect_many
from exceptions import DetectionFailure, ImageDecodeError, InsufficientSamplesError
from log_config.logger import get_logger
from rectify.fisheye_rectifier import undistort_image

logger = get_logger(__name__)


def calibrate_detailed(
    images: Sequence[bytes],
    checkerboard_width: int,
    checkerboard_height: int,
    config: Optional[AppConfig] = None,
    sources: Optional[Sequence[str]] = None,
) -> CalibrationResult:
    """Decode samples, detect the board in each and solve for the intrinsics."""
    config = config or default_config()
    board = CheckerboardSpec(cols=int(checkerboard_width), rows=int(checkerboard_height))
    labels = list(sources) if sources is not None else [f"sample[{i}]" for i in range(len(images))]
    if len(labels) != len(images):
        raise ValueError(f"Got {len(labels)} source labels for {len(images)} samples")

    decoded = []
    decoded_labels: List[str] = []
    image_size = None
    for data, label in zip(images, labels):
        try:
            image = decode_image(data, source=label)
        except ImageDecodeError as e:
            logger.warning(f"Skipping sample: {e}")
            continue
        size = (image.shape[1], image.shape[0])
        if image_size is None:
            image_size = size
        elif size != image_size:
            logger.warning(
                f"Skipping {label}: size {size[0]}x{size[1]} differs from "
                f"{image_size[0]}x{image_size[1]}"
            )
            continue
        decoded.append(image)
        decoded_labels.append(label)

    if image_size is None:
        raise InsufficientSamplesError(
            "No sample image could be decoded",
            valid_views=0,
            required_views=config.calibration.min_views,
        )

    outcomes = detect_many(
        decoded,
        board,
        config=config.detector,
        workers=config.runtime.workers,
        sources=decoded_labels,
    )
    corner_sets: List[CornerSet] = []
    for outcome in outcomes:
        if isinstance(outcome, DetectionFailure):
            logger.warning(f"Skipping sample ({outcome.reason.value}): {outcome}")
            continue
        corner_sets.append(outcome)
    logger.info(
        f"Detected a {board.cols}x{board.rows} checkerboard in {len(corner_sets)} of {len(images)} samples"
    )

    if not corner_sets:
        raise InsufficientSamplesError(
            f"Could not detect any checkerboards with size {board.cols}x{board.rows}",
            valid_views=0,
            required_views=config.calibration.min_views,
        )
    calibrator = FisheyeCalibrator(config.calibration)
    return calibrator.calibrate(corner_sets, board, image_size)


def calibrate(
    images: Sequence[bytes],
    checkerboard_width: int,
    checkerboard_height: int,
    config: Optional[AppConfig] = None,
) -> Dict[str, Any]:
    """Return {"K": 3x3 list, "D": 4-element list, "rms": float}."""
    result = calibrate_detailed(images, checkerboard_width, checkerboard_height, config=config)
    payload = result.intrinsics.to_dict()
    payload["rms"] = result.rms_error_px
    return payload


def undistort(
    image: bytes,
    K: Any,
    D: Any,
    options: Optional[Mapping[str, Any]] = None,
    config: Optional[AppConfig] = None,
) -> bytes:
    """Undistort an encoded image and re-encode it in the hinted format.

    Args:
        image: Encoded source image
        K: 3x3 camera matrix
        D: 4 fisheye distortion coefficients
        options: ``extname`` format hint (default ".png"), ``scale`` and
            optionally ``balance``
        config: Supplies the remaining undistortion defaults
    """
    intrinsics = Intrinsics.from_matrices(K, D)
    config = config or default_config()
    options = dict(options or {})
    undistort_config = _undistort_config(config.undistort, options)
    format_hint = options.get("extname") or ".png"

    pixels = decode_image(image, source=options.get("source"))
    corrected = undistort_image(pixels, intrinsics, undistort_config)
    return encode_image(corrected, format_hint)


def _undistort_config(base: UndistortConfig, options: Mapping[str, Any]) -> UndistortConfig:
    overrides = {}
    if options.get("scale") is not None:
        overrides["scale"] = float(options["scale"])
    if "balance" in options:
        overrides["balance"] = None if options["balance"] is None else float(options["balance"])
    return dataclasses.replace(base, **overrides) if overrides else base
