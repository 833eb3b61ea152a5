"""Checkerboard interior-corner detector with sub-pixel refinement.

Coarse corners are saddle points of the smoothed intensity surface, verified
by the four alternating sectors an X-junction shows on a surrounding ring,
then linked into a lattice by growing outward from a seed along two local
grid axes. Each corner is refined by the gradient-orthogonality iteration:
at the true corner every nearby gradient is perpendicular to the vector from
the corner to where it is sampled.
"""

from __future__ import annotations

import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Sequence, Tuple, Union

import cv2
import numpy as np

from contracts import CheckerboardSpec, CornerSet, PixelBuffer
from detect.config import CheckerboardDetectorConfig
from detect.detector import CornerDetector
from detect.utils import (
    image_gradients,
    local_maxima,
    normalize_intensity,
    sample_bilinear,
    saddle_response,
    to_grayscale,
)
from exceptions import DetectionFailure, DetectionFailureReason
from log_config.logger import get_logger, log_performance

logger = get_logger(__name__)

GridKey = Tuple[int, int]
DetectionOutcome = Union[CornerSet, DetectionFailure]

_MIN_PARTIAL_LATTICE = 4


class CheckerboardDetector(CornerDetector):
    def __init__(self, config: Optional[CheckerboardDetectorConfig] = None) -> None:
        self._config = config or CheckerboardDetectorConfig()

    @property
    def config(self) -> CheckerboardDetectorConfig:
        return self._config

    def detect(
        self,
        image: PixelBuffer,
        board: CheckerboardSpec,
        source: Optional[str] = None,
    ) -> CornerSet:
        start = time.perf_counter()
        gray = normalize_intensity(to_grayscale(np.asarray(image)))
        height, width = gray.shape
        largest_partial = 0

        for sigma in self._config.smoothing_sigmas:
            candidates = self._find_candidates(gray, sigma)
            if len(candidates) < _MIN_PARTIAL_LATTICE:
                logger.debug(f"sigma={sigma}: {len(candidates)} saddle candidates, skipping")
                continue
            grid, node_count = self._match_lattice(candidates, board)
            if grid is None:
                largest_partial = max(largest_partial, node_count)
                logger.debug(
                    f"sigma={sigma}: {len(candidates)} candidates, largest lattice {node_count} nodes"
                )
                continue
            refined = self._refine(gray, grid)
            log_performance(
                f"checkerboard detection ({width}x{height})",
                (time.perf_counter() - start) * 1000.0,
                threshold_ms=500.0,
            )
            return CornerSet(
                board=board,
                points=refined.reshape(-1, 2),
                image_size=(width, height),
                source=source,
            )

        label = source or "image"
        if largest_partial >= _MIN_PARTIAL_LATTICE:
            raise DetectionFailure(
                f"{label}: found a {largest_partial}-corner lattice, expected "
                f"{board.corner_count} ({board.cols}x{board.rows})",
                DetectionFailureReason.CORNER_COUNT_MISMATCH,
                found_corners=largest_partial,
            )
        raise DetectionFailure(
            f"{label}: no {board.cols}x{board.rows} checkerboard found",
            DetectionFailureReason.PATTERN_NOT_FOUND,
        )

    # Coarse phase

    def _find_candidates(self, gray: np.ndarray, sigma: float) -> np.ndarray:
        cfg = self._config
        response = saddle_response(gray, sigma)
        peak = float(response.max())
        if peak <= 0.0:
            return np.empty((0, 2), dtype=np.float64)

        ring_radius = 2.0 * sigma + 1.0
        border = int(np.ceil(ring_radius)) + 1
        maxima = local_maxima(
            response,
            radius=int(round(sigma)) + 2,
            threshold=cfg.response_threshold * peak,
            border=border,
        )
        if len(maxima) == 0:
            return np.empty((0, 2), dtype=np.float64)
        if len(maxima) > cfg.max_candidates:
            strength = response[maxima[:, 1], maxima[:, 0]]
            keep = np.argsort(-strength, kind="stable")[: cfg.max_candidates]
            maxima = maxima[np.sort(keep)]

        smoothed = cv2.GaussianBlur(gray, (0, 0), sigmaX=sigma, sigmaY=sigma)
        points = maxima.astype(np.float64)
        keep = self._ring_test(smoothed, points, ring_radius)
        points = points[keep]
        strength = response[maxima[keep, 1], maxima[keep, 0]]
        return _suppress_duplicates(points, strength, min_distance=sigma + 1.0)

    def _ring_test(self, smoothed: np.ndarray, points: np.ndarray, radius: float) -> np.ndarray:
        """Keep points surrounded by four alternating dark/bright sectors."""
        n = self._config.ring_samples
        angles = (np.arange(n) + 0.5) * (2.0 * np.pi / n)
        xs = points[:, 0:1] + radius * np.cos(angles)[None, :]
        ys = points[:, 1:2] + radius * np.sin(angles)[None, :]
        values = sample_bilinear(smoothed, xs, ys)

        lo = values.min(axis=1, keepdims=True)
        hi = values.max(axis=1, keepdims=True)
        contrast = (hi - lo)[:, 0]
        mid = 0.5 * (lo + hi)
        band = 0.15 * (hi - lo)
        labels = np.zeros(values.shape, dtype=np.int8)
        labels[values > mid + band] = 1
        labels[values < mid - band] = -1

        half = n // 2
        opposite = np.roll(labels, half, axis=1)
        both = (labels != 0) & (opposite != 0)
        agree = (labels == opposite) & both
        symmetry = agree.sum(axis=1) / np.maximum(both.sum(axis=1), 1)

        keep = np.zeros(len(points), dtype=bool)
        for i in range(len(points)):
            if contrast[i] < self._config.min_ring_contrast or symmetry[i] < 0.75:
                continue
            sequence = labels[i][labels[i] != 0]
            if len(sequence) < 4:
                continue
            changes = int(np.count_nonzero(sequence != np.roll(sequence, 1)))
            keep[i] = changes == 4
        return keep

    def _match_lattice(
        self, points: np.ndarray, board: CheckerboardSpec
    ) -> Tuple[Optional[np.ndarray], int]:
        center = np.median(points, axis=0)
        order = np.argsort(np.linalg.norm(points - center, axis=1), kind="stable")
        largest = 0
        for seed in order[: self._config.max_seeds]:
            axes = _seed_axes(points, int(seed))
            if axes is None:
                continue
            nodes = _grow_lattice(points, int(seed), axes, self._config.grid_tolerance)
            grid = _canonical_grid(nodes, points, board)
            if grid is not None:
                return grid, len(nodes)
            largest = max(largest, len(nodes))
        return None, largest

    # Sub-pixel phase

    def _refine(self, gray: np.ndarray, grid: np.ndarray) -> np.ndarray:
        cfg = self._config
        smoothed = cv2.GaussianBlur(gray, (0, 0), sigmaX=1.0, sigmaY=1.0)
        grad_x, grad_y = image_gradients(smoothed)
        spacing = _local_spacing(grid)
        refined = grid.reshape(-1, 2).copy()
        for idx, (start, local) in enumerate(zip(grid.reshape(-1, 2), spacing.ravel())):
            half = int(np.clip(0.4 * local, 2, cfg.subpix_half_window))
            refined[idx] = _refine_corner(
                grad_x,
                grad_y,
                start,
                half,
                cfg.subpix_max_iterations,
                cfg.subpix_epsilon,
            )
        return refined.reshape(grid.shape)


def detect_corners(
    image: PixelBuffer,
    board: CheckerboardSpec,
    config: Optional[CheckerboardDetectorConfig] = None,
    source: Optional[str] = None,
) -> CornerSet:
    """Detect the interior corners of a checkerboard in one image."""
    return CheckerboardDetector(config).detect(image, board, source=source)


def detect_many(
    images: Sequence[PixelBuffer],
    board: CheckerboardSpec,
    config: Optional[CheckerboardDetectorConfig] = None,
    workers: int = 1,
    sources: Optional[Sequence[str]] = None,
) -> List[DetectionOutcome]:
    """Run detection on every image, returning results in input order.

    Failures are returned in place of the corner set so callers can decide
    whether a missing view is fatal.
    """
    detector = CheckerboardDetector(config)
    labels = list(sources) if sources is not None else [f"image[{i}]" for i in range(len(images))]
    if len(labels) != len(images):
        raise ValueError(f"Got {len(labels)} source labels for {len(images)} images")

    def _detect_one(item: Tuple[PixelBuffer, str]) -> DetectionOutcome:
        image, label = item
        try:
            return detector.detect(image, board, source=label)
        except DetectionFailure as e:
            return e

    items = list(zip(images, labels))
    if workers <= 1 or len(items) <= 1:
        return [_detect_one(item) for item in items]
    with ThreadPoolExecutor(max_workers=workers) as executor:
        return list(executor.map(_detect_one, items))


def _seed_axes(points: np.ndarray, seed: int) -> Optional[Tuple[np.ndarray, np.ndarray]]:
    dist = np.linalg.norm(points - points[seed], axis=1)
    dist[seed] = np.inf
    neighbours = np.argsort(dist, kind="stable")[:4]
    neighbours = neighbours[np.isfinite(dist[neighbours])]
    if len(neighbours) < 2:
        return None
    vectors = points[neighbours] - points[seed]
    first = vectors[0]
    first_len = float(np.linalg.norm(first))
    if first_len < 1e-6:
        return None
    others = vectors[1:]
    lengths = np.linalg.norm(others, axis=1)
    sines = np.abs(first[0] * others[:, 1] - first[1] * others[:, 0]) / np.maximum(
        lengths * first_len, 1e-12
    )
    k = int(np.argmax(sines))
    if sines[k] < 0.5 or not 0.5 <= lengths[k] / first_len <= 2.0:
        return None
    return first, others[k]


def _grow_lattice(
    points: np.ndarray,
    seed: int,
    axes: Tuple[np.ndarray, np.ndarray],
    tolerance: float,
) -> Dict[GridKey, int]:
    """Breadth-first lattice growth; returns grid coordinate -> point index."""
    nodes: Dict[GridKey, int] = {(0, 0): seed}
    steps: Dict[GridKey, Tuple[np.ndarray, np.ndarray]] = {(0, 0): axes}
    used = np.zeros(len(points), dtype=bool)
    used[seed] = True
    queue = deque([(0, 0)])

    while queue:
        key = queue.popleft()
        i, j = key
        here = points[nodes[key]]
        step_i, step_j = steps[key]
        for di, dj in ((1, 0), (-1, 0), (0, 1), (0, -1)):
            target = (i + di, j + dj)
            if target in nodes:
                continue
            step = step_i * di if di else step_j * dj
            behind = (i - di, j - dj)
            if behind in nodes:
                predicted = 2.0 * here - points[nodes[behind]]
            else:
                predicted = here + step
            dist = np.linalg.norm(points - predicted, axis=1)
            dist[used] = np.inf
            best = int(np.argmin(dist))
            if not dist[best] <= tolerance * float(np.linalg.norm(step)):
                continue
            actual = points[best] - here
            if di:
                new_steps = (actual * di, step_j)
            else:
                new_steps = (step_i, actual * dj)
            nodes[target] = best
            steps[target] = new_steps
            used[best] = True
            queue.append(target)
    return nodes


def _canonical_grid(
    nodes: Dict[GridKey, int], points: np.ndarray, board: CheckerboardSpec
) -> Optional[np.ndarray]:
    """Arrange a full lattice as (rows, cols, 2) in canonical row-major order."""
    keys = np.array(list(nodes.keys()))
    i_min, j_min = keys.min(axis=0)
    width = int(keys[:, 0].max() - i_min + 1)
    height = int(keys[:, 1].max() - j_min + 1)
    if len(nodes) != width * height:
        return None

    grid = np.empty((height, width, 2), dtype=np.float64)
    for (i, j), idx in nodes.items():
        grid[j - j_min, i - i_min] = points[idx]

    if (width, height) == (board.cols, board.rows):
        pass
    elif (width, height) == (board.rows, board.cols):
        grid = grid.transpose(1, 0, 2)
    else:
        return None

    options = [grid, grid[::-1], grid[:, ::-1], grid[::-1, ::-1]]
    if board.cols == board.rows:
        options += [g.transpose(1, 0, 2) for g in options]

    best = None
    best_score = -np.inf
    for option in options:
        across = option[0, -1] - option[0, 0]
        down = option[-1, 0] - option[0, 0]
        if across[0] * down[1] - across[1] * down[0] <= 0:
            continue
        score = across[0] / max(float(np.linalg.norm(across)), 1e-12)
        if score > best_score:
            best = option
            best_score = score
    if best is None:
        return None
    return np.ascontiguousarray(best)


def _local_spacing(grid: np.ndarray) -> np.ndarray:
    """Distance from each corner to its closest grid neighbour."""
    rows, cols = grid.shape[:2]
    spacing = np.full((rows, cols), np.inf)
    if cols > 1:
        across = np.linalg.norm(np.diff(grid, axis=1), axis=2)
        spacing[:, :-1] = np.minimum(spacing[:, :-1], across)
        spacing[:, 1:] = np.minimum(spacing[:, 1:], across)
    if rows > 1:
        down = np.linalg.norm(np.diff(grid, axis=0), axis=2)
        spacing[:-1, :] = np.minimum(spacing[:-1, :], down)
        spacing[1:, :] = np.minimum(spacing[1:, :], down)
    return spacing


def _refine_corner(
    grad_x: np.ndarray,
    grad_y: np.ndarray,
    start: np.ndarray,
    half: int,
    max_iterations: int,
    epsilon: float,
) -> np.ndarray:
    offsets = np.arange(-half, half + 1, dtype=np.float64)
    dx, dy = np.meshgrid(offsets, offsets)
    dx = dx.ravel()
    dy = dy.ravel()
    sigma = max(half / 2.0, 1.0)
    weights = np.exp(-(dx * dx + dy * dy) / (2.0 * sigma * sigma))

    corner = np.asarray(start, dtype=np.float64).copy()
    for _ in range(max_iterations):
        qx = corner[0] + dx
        qy = corner[1] + dy
        gx = sample_bilinear(grad_x, qx, qy)
        gy = sample_bilinear(grad_y, qx, qy)
        gxx = weights * gx * gx
        gxy = weights * gx * gy
        gyy = weights * gy * gy
        a = np.array([[gxx.sum(), gxy.sum()], [gxy.sum(), gyy.sum()]])
        b = np.array(
            [(gxx * qx + gxy * qy).sum(), (gxy * qx + gyy * qy).sum()]
        )
        det = a[0, 0] * a[1, 1] - a[0, 1] * a[1, 0]
        if abs(det) < 1e-12:
            break
        updated = np.linalg.solve(a, b)
        shift = float(np.linalg.norm(updated - corner))
        corner = updated
        if shift < epsilon:
            break

    if np.linalg.norm(corner - start) > half:
        return np.asarray(start, dtype=np.float64)
    return corner


def _suppress_duplicates(points: np.ndarray, strength: np.ndarray, min_distance: float) -> np.ndarray:
    """Drop weaker candidates closer than min_distance to a stronger one.

    Plateaus in the response (a corner exactly between two pixels) produce
    several equal maxima for one junction.
    """
    if len(points) < 2:
        return points
    order = np.argsort(-strength, kind="stable")
    kept: List[int] = []
    for idx in order:
        if kept and np.min(np.linalg.norm(points[kept] - points[idx], axis=1)) < min_distance:
            continue
        kept.append(int(idx))
    return points[np.sort(np.asarray(kept))]
