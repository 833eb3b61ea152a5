"""Tests for checkerboard corner detection on rendered fisheye views."""

from __future__ import annotations

import cv2
import numpy as np
import pytest

from calib.synthetic import project_corner_set
from contracts import CheckerboardSpec
from detect import CheckerboardDetector, CheckerboardDetectorConfig, detect_corners, detect_many
from detect.utils import local_maxima, normalize_intensity, sample_bilinear, saddle_response
from exceptions import DetectionFailure, DetectionFailureReason


def test_detects_every_rendered_view(board, render_poses, rendered_views, render_intrinsics, image_size):
    for index, (pose, image) in enumerate(zip(render_poses, rendered_views)):
        corners = detect_corners(image, board, source=f"view{index}")
        expected = project_corner_set(board, render_intrinsics, pose, image_size).points

        assert corners.points.shape == (54, 2)
        assert corners.image_size == image_size
        assert corners.source == f"view{index}"
        errors = np.linalg.norm(corners.points - expected, axis=1)
        assert errors.mean() < 0.3, f"view {index}: mean error {errors.mean():.3f}px"
        assert errors.max() < 1.0, f"view {index}: max error {errors.max():.3f}px"


def test_corners_are_row_major_with_x_increasing_along_rows(board, rendered_views):
    grid = detect_corners(rendered_views[0], board).grid()
    assert np.all(np.diff(grid[:, :, 0], axis=1) > 0)
    assert np.all(np.diff(grid[:, :, 1], axis=0) > 0)


def test_color_input_matches_grayscale(board, rendered_views):
    gray = rendered_views[0]
    color = cv2.cvtColor(gray, cv2.COLOR_GRAY2BGR)
    np.testing.assert_allclose(
        detect_corners(color, board).points, detect_corners(gray, board).points, atol=1e-6
    )


def test_blank_image_reports_pattern_not_found(board):
    blank = np.full((480, 640), 128, dtype=np.uint8)
    with pytest.raises(DetectionFailure) as excinfo:
        detect_corners(blank, board, source="blank.png")
    assert excinfo.value.reason == DetectionFailureReason.PATTERN_NOT_FOUND
    assert "blank.png" in str(excinfo.value)


def test_wrong_board_size_reports_corner_count_mismatch(rendered_views):
    with pytest.raises(DetectionFailure) as excinfo:
        detect_corners(rendered_views[0], CheckerboardSpec(cols=7, rows=5))
    assert excinfo.value.reason == DetectionFailureReason.CORNER_COUNT_MISMATCH
    assert excinfo.value.found_corners == 54


def test_detect_many_preserves_order_and_returns_failures(board, rendered_views):
    blank = np.zeros_like(rendered_views[0])
    images = [rendered_views[0], blank, rendered_views[1]]
    serial = detect_many(images, board, workers=1, sources=["a", "b", "c"])
    parallel = detect_many(images, board, workers=3, sources=["a", "b", "c"])

    assert [getattr(r, "source", None) for r in serial] == ["a", None, "c"]
    assert isinstance(serial[1], DetectionFailure)
    assert isinstance(parallel[1], DetectionFailure)
    np.testing.assert_array_equal(serial[0].points, parallel[0].points)
    np.testing.assert_array_equal(serial[2].points, parallel[2].points)


def test_detector_uses_configured_sigmas(board, rendered_views):
    detector = CheckerboardDetector(CheckerboardDetectorConfig(smoothing_sigmas=(1.5,)))
    assert detector.config.smoothing_sigmas == (1.5,)
    assert len(detector.detect(rendered_views[0], board)) == 54


def test_saddle_response_peaks_at_x_junction():
    image = np.zeros((41, 41), dtype=np.float32)
    image[:20, :20] = 1.0
    image[20:, 20:] = 1.0
    response = saddle_response(image, sigma=1.5)
    maxima = local_maxima(response, radius=3, threshold=0.1 * response.max(), border=3)
    assert len(maxima) >= 1
    x, y = maxima[np.argmax(response[maxima[:, 1], maxima[:, 0]])]
    assert abs(x - 19.5) <= 0.5
    assert abs(y - 19.5) <= 0.5


def test_normalize_intensity_handles_flat_images():
    flat = np.full((10, 10), 42.0, dtype=np.float32)
    assert np.all(normalize_intensity(flat) == 0.0)


def test_sample_bilinear_interpolates_and_clamps():
    image = np.array([[0.0, 10.0], [20.0, 30.0]])
    assert sample_bilinear(image, np.array([0.5]), np.array([0.5]))[0] == pytest.approx(15.0)
    assert sample_bilinear(image, np.array([-5.0]), np.array([9.0]))[0] == pytest.approx(20.0)


def test_detect_many_rejects_short_source_list(board, rendered_views):
    with pytest.raises(ValueError, match="1 source labels for 2 images"):
        detect_many(rendered_views[:2], board, sources=["only"])
