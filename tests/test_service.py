"""Tests for the byte-level calibrate/undistort boundary and the image codec."""

from __future__ import annotations

import cv2
import numpy as np
import pytest

from app.codec import decode_image, encode_image, normalize_extension
from app.fisheye_service import calibrate, calibrate_detailed, undistort
from exceptions import (
    ImageDecodeError,
    ImageEncodeError,
    InsufficientSamplesError,
    InvalidIntrinsicsError,
)


def _png(image: np.ndarray) -> bytes:
    ok, buffer = cv2.imencode(".png", image)
    assert ok
    return buffer.tobytes()


def test_calibrate_recovers_render_camera(encoded_samples, render_intrinsics):
    payload = calibrate(encoded_samples, 9, 6)

    K = np.asarray(payload["K"])
    assert K.shape == (3, 3)
    assert len(payload["D"]) == 4
    assert K[0, 0] == pytest.approx(render_intrinsics.fx, rel=0.02)
    assert K[1, 1] == pytest.approx(render_intrinsics.fy, rel=0.02)
    assert K[0, 2] == pytest.approx(render_intrinsics.cx, abs=3.0)
    assert K[1, 2] == pytest.approx(render_intrinsics.cy, abs=3.0)
    assert payload["rms"] < 0.5


def test_undecodable_and_blank_samples_are_skipped(encoded_samples, image_size):
    blank = _png(np.full((image_size[1], image_size[0]), 90, dtype=np.uint8))
    samples = [b"not an image", blank] + list(encoded_samples[:3])
    result = calibrate_detailed(samples, 9, 6, sources=["junk", "blank", "a", "b", "c"])
    assert len(result.poses) == 3
    assert result.diagnostics["sources"] == ["a", "b", "c"]


def test_samples_of_another_size_are_skipped(encoded_samples):
    small = _png(np.zeros((100, 120), dtype=np.uint8))
    result = calibrate_detailed(list(encoded_samples[:3]) + [small], 9, 6)
    assert len(result.poses) == 3
    assert result.image_size == (640, 480)


def test_no_detectable_board_is_insufficient(encoded_samples):
    with pytest.raises(InsufficientSamplesError, match="5x4"):
        calibrate(encoded_samples[:2], 5, 4)


def test_no_decodable_sample_is_insufficient():
    with pytest.raises(InsufficientSamplesError):
        calibrate([b"", b"garbage"], 9, 6)


def test_two_detected_views_are_insufficient(encoded_samples):
    with pytest.raises(InsufficientSamplesError) as excinfo:
        calibrate(encoded_samples[:2], 9, 6)
    assert excinfo.value.valid_views == 2


def test_undistort_round_trips_through_the_codec(encoded_samples, render_intrinsics):
    K = render_intrinsics.camera_matrix.tolist()
    D = render_intrinsics.distortion.tolist()

    out = undistort(encoded_samples[0], K, D, {"extname": ".jpg", "scale": 0.8})

    assert out[:2] == b"\xff\xd8"  # JPEG SOI marker
    decoded = decode_image(out)
    assert decoded.shape == (480, 640, 3)


def test_undistort_defaults_to_png(encoded_samples, render_intrinsics):
    out = undistort(encoded_samples[0], render_intrinsics.camera_matrix, render_intrinsics.distortion)
    assert out[:8] == b"\x89PNG\r\n\x1a\n"


def test_undistort_rejects_malformed_intrinsics_before_decoding():
    with pytest.raises(InvalidIntrinsicsError):
        undistort(b"never decoded", np.eye(3), [0.0, 0.0])


def test_undistort_rejects_unknown_format(encoded_samples, render_intrinsics):
    with pytest.raises(ImageEncodeError):
        undistort(
            encoded_samples[0],
            render_intrinsics.camera_matrix,
            render_intrinsics.distortion,
            {"extname": ".xyz"},
        )


@pytest.mark.parametrize(
    "hint,expected",
    [(".JPG", ".jpg"), ("png", ".png"), ("photo.Jpeg", ".jpeg"), ("", "")],
)
def test_normalize_extension(hint, expected):
    assert normalize_extension(hint) == expected


def test_decode_rejects_empty_and_garbage():
    with pytest.raises(ImageDecodeError):
        decode_image(b"")
    with pytest.raises(ImageDecodeError) as excinfo:
        decode_image(b"garbage", source="x.png")
    assert excinfo.value.source == "x.png"


def test_encode_then_decode_grayscale():
    image = np.tile(np.arange(64, dtype=np.uint8), (32, 1))
    decoded = decode_image(encode_image(image, "png"))
    assert decoded.shape == (32, 64, 3)
    np.testing.assert_array_equal(decoded[:, :, 0], image)


def test_source_labels_must_match_samples(encoded_samples):
    with pytest.raises(ValueError, match="2 source labels for 3 samples"):
        calibrate_detailed(list(encoded_samples[:3]), 9, 6, sources=["a", "b"])
