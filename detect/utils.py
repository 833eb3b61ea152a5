from __future__ import annotations

import cv2
import numpy as np


def to_grayscale(frame: np.ndarray) -> np.ndarray:
    if frame.ndim == 3:
        if frame.shape[2] == 4:
            frame = frame[:, :, :3]
        return frame.mean(axis=2, dtype=np.float32)
    return frame.astype(np.float32, copy=False)


def normalize_intensity(gray: np.ndarray, low_pct: float = 1.0, high_pct: float = 99.0) -> np.ndarray:
    """Stretch intensities so the given percentiles map to [0, 1]."""
    lo, hi = np.percentile(gray, [low_pct, high_pct])
    if hi - lo < 1e-6:
        return np.zeros_like(gray, dtype=np.float32)
    out = (gray - lo) / (hi - lo)
    return np.clip(out, 0.0, 1.0).astype(np.float32)


def saddle_response(gray: np.ndarray, sigma: float) -> np.ndarray:
    """Negative Hessian determinant of the smoothed image.

    Positive at checkerboard X-junctions, near zero along straight edges.
    """
    smoothed = cv2.GaussianBlur(gray, (0, 0), sigmaX=sigma, sigmaY=sigma)
    ixx = cv2.Sobel(smoothed, cv2.CV_32F, 2, 0, ksize=3)
    iyy = cv2.Sobel(smoothed, cv2.CV_32F, 0, 2, ksize=3)
    ixy = cv2.Sobel(smoothed, cv2.CV_32F, 1, 1, ksize=3)
    return ixy * ixy - ixx * iyy


def local_maxima(response: np.ndarray, radius: int, threshold: float, border: int) -> np.ndarray:
    """Return (n, 2) integer x, y positions of thresholded local maxima."""
    size = 2 * radius + 1
    dilated = cv2.dilate(response, cv2.getStructuringElement(cv2.MORPH_RECT, (size, size)))
    mask = (response >= dilated) & (response > threshold)
    if border > 0:
        mask[:border, :] = False
        mask[-border:, :] = False
        mask[:, :border] = False
        mask[:, -border:] = False
    ys, xs = np.nonzero(mask)
    return np.stack([xs, ys], axis=1)


def image_gradients(gray: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Sobel gradients scaled to intensity units per pixel."""
    grad_x = cv2.Sobel(gray, cv2.CV_32F, 1, 0, ksize=3) / 8.0
    grad_y = cv2.Sobel(gray, cv2.CV_32F, 0, 1, ksize=3) / 8.0
    return grad_x, grad_y


def sample_bilinear(image: np.ndarray, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
    """Bilinear samples of a 2D image at float positions, clamped to the edges."""
    h, w = image.shape[:2]
    xs = np.clip(np.asarray(xs, dtype=np.float64), 0.0, w - 1.0)
    ys = np.clip(np.asarray(ys, dtype=np.float64), 0.0, h - 1.0)
    x0 = np.minimum(np.floor(xs).astype(np.intp), w - 2 if w > 1 else 0)
    y0 = np.minimum(np.floor(ys).astype(np.intp), h - 2 if h > 1 else 0)
    x1 = np.minimum(x0 + 1, w - 1)
    y1 = np.minimum(y0 + 1, h - 1)
    fx = xs - x0
    fy = ys - y0
    top = image[y0, x0] * (1.0 - fx) + image[y0, x1] * fx
    bottom = image[y1, x0] * (1.0 - fx) + image[y1, x1] * fx
    return top * (1.0 - fy) + bottom * fy
