"""Planar geometry on point sequences: areas, lengths, hulls and polygon simplification."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Rect:
    """Axis-aligned integer rectangle given by its top-left corner and size."""

    x: int
    y: int
    width: int
    height: int


def _as_array(points) -> np.ndarray:
    return np.asarray(points, dtype=float).reshape(-1, 2)


def _as_tuples(points) -> list[tuple]:
    arr = np.asarray(points)
    if arr.size == 0:
        return []
    return [tuple(p) for p in arr.reshape(-1, 2).tolist()]


def contour_area(points) -> float:
    """Unsigned area enclosed by a polygon (shoelace formula)."""
    arr = _as_array(points)
    if len(arr) < 3:
        return 0.0
    x, y = arr[:, 0], arr[:, 1]
    twice = np.dot(x, np.roll(y, -1)) - np.dot(np.roll(x, -1), y)
    return abs(float(twice)) / 2.0


def arc_length(points, closed) -> float:
    """Total length of a polyline, including the closing segment when closed."""
    arr = _as_array(points)
    if len(arr) < 2:
        return 0.0
    segments = np.diff(arr, axis=0)
    if closed:
        segments = np.vstack([segments, arr[0] - arr[-1]])
    return float(np.hypot(segments[:, 0], segments[:, 1]).sum())


def bounding_rect(points) -> Rect:
    """Smallest integer rectangle containing every point; inclusive of both ends."""
    arr = _as_array(points)
    if len(arr) == 0:
        return Rect(0, 0, 0, 0)
    lo = np.floor(arr.min(axis=0)).astype(int)
    hi = np.floor(arr.max(axis=0)).astype(int)
    return Rect(int(lo[0]), int(lo[1]), int(hi[0] - lo[0] + 1), int(hi[1] - lo[1] + 1))


def _segment_distances(arr: np.ndarray, start: np.ndarray, end: np.ndarray) -> np.ndarray:
    direction = end - start
    length = math.hypot(direction[0], direction[1])
    rel = arr - start
    if length == 0.0:
        return np.hypot(rel[:, 0], rel[:, 1])
    cross = rel[:, 0] * direction[1] - rel[:, 1] * direction[0]
    return np.abs(cross) / length


def _douglas_peucker(arr: np.ndarray, first: int, last: int, epsilon: float) -> set[int]:
    keep = {first, last}
    pending = [(first, last)]
    while pending:
        i, j = pending.pop()
        if j - i < 2:
            continue
        inner = arr[i + 1 : j]
        distances = _segment_distances(inner, arr[i], arr[j])
        k = int(np.argmax(distances))
        if distances[k] > epsilon:
            split = i + 1 + k
            keep.add(split)
            pending.append((i, split))
            pending.append((split, j))
    return keep


def _farthest(arr: np.ndarray, index: int) -> int:
    rel = arr - arr[index]
    return int(np.argmax(np.hypot(rel[:, 0], rel[:, 1])))


def approx_poly_dp(points, epsilon, closed) -> list[tuple]:
    """Simplify a polyline with the Douglas-Peucker algorithm.

    The result is a subset of the input points, in their original order.
    """
    originals = _as_tuples(points)
    arr = _as_array(points)
    n = len(arr)
    if n <= 2:
        return list(originals)
    if not closed:
        keep = _douglas_peucker(arr, 0, n - 1, epsilon)
        return [originals[k] for k in sorted(keep)]

    a = _farthest(arr, 0)
    b = _farthest(arr, a)
    if np.array_equal(arr[a], arr[b]):
        return [originals[0]]
    order = [(a + k) % n for k in range(n)] + [a]
    chain = arr[order]
    split = (b - a) % n
    keep = _douglas_peucker(chain, 0, split, epsilon) | _douglas_peucker(chain, split, n, epsilon)
    return [originals[order[p]] for p in sorted(keep) if p < n]


def _cross(o, a, b) -> float:
    return (a[0] - o[0]) * (b[1] - o[1]) - (a[1] - o[1]) * (b[0] - o[0])


def convex_hull(points) -> list[tuple]:
    """Convex hull vertices, counter-clockwise with respect to the axes, collinear points dropped."""
    unique = sorted(set(_as_tuples(points)))
    if len(unique) <= 2:
        return unique

    def half(sequence):
        chain: list[tuple] = []
        for p in sequence:
            while len(chain) >= 2 and _cross(chain[-2], chain[-1], p) <= 0:
                chain.pop()
            chain.append(p)
        return chain

    lower = half(unique)
    upper = half(reversed(unique))
    return lower[:-1] + upper[:-1]


def min_area_rect(points) -> list[tuple[float, float]]:
    """Four corners of the minimum-area (possibly rotated) rectangle around the points."""
    hull = convex_hull(points)
    if not hull:
        raise ValueError("min_area_rect needs at least one point")
    arr = _as_array(hull)
    if len(arr) == 1:
        p = (float(arr[0, 0]), float(arr[0, 1]))
        return [p, p, p, p]
    if len(arr) == 2:
        p = (float(arr[0, 0]), float(arr[0, 1]))
        q = (float(arr[1, 0]), float(arr[1, 1]))
        return [p, q, q, p]

    best = None
    for i in range(len(arr)):
        edge = arr[(i + 1) % len(arr)] - arr[i]
        length = math.hypot(edge[0], edge[1])
        if length == 0.0:
            continue
        u = edge / length
        v = np.array([-u[1], u[0]])
        pu = arr @ u
        pv = arr @ v
        area = (pu.max() - pu.min()) * (pv.max() - pv.min())
        if best is None or area < best[0]:
            best = (area, u, v, pu.min(), pu.max(), pv.min(), pv.max())

    _, u, v, u0, u1, v0, v1 = best
    corners = [u * u0 + v * v0, u * u1 + v * v0, u * u1 + v * v1, u * u0 + v * v1]
    return [(float(c[0]), float(c[1])) for c in corners]


def order_corners(corners) -> list[tuple]:
    """Order four corners as top-left, top-right, bottom-right, bottom-left.

    Any other number of points is returned unchanged.
    """
    pts = _as_tuples(corners)
    if len(pts) != 4:
        logger.error("Expected 4 corners, got %d", len(pts))
        return pts
    sums = sorted((p[0] + p[1], i) for i, p in enumerate(pts))
    diffs = sorted((p[1] - p[0], i) for i, p in enumerate(pts))
    ordered = [pts[sums[0][1]], pts[diffs[0][1]], pts[sums[3][1]], pts[diffs[3][1]]]
    logger.info(
        "Corners ordered: TL%s TR%s BR%s BL%s", ordered[0], ordered[1], ordered[2], ordered[3]
    )
    return ordered