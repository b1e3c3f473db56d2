"""Contour extraction, polygon rasterisation and connected-component analysis on binary masks.

Contours are lists of integer ``(x, y)`` tuples in image coordinates.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import numpy as np
from PIL import Image, ImageDraw
from scipy import ndimage

from .geometry import contour_area


class RetrievalMode(Enum):
    """Which borders :func:`find_contours` reports."""

    EXTERNAL = "external"
    LIST = "list"
    CCOMP = "ccomp"


@dataclass(frozen=True, eq=False)
class Components:
    """8-connected components of a mask; label 0 is the background."""

    labels: np.ndarray
    areas: np.ndarray
    centroids: np.ndarray

    @property
    def count(self) -> int:
        """Number of labels, background included."""
        return len(self.areas)

    def mask(self, label) -> np.ndarray:
        """An 8-bit mask that is 255 on the given component."""
        return np.where(self.labels == label, 255, 0).astype(np.uint8)


# (dy, dx) neighbour offsets, clockwise on screen starting from east.
_DIRECTIONS = ((0, 1), (1, 1), (1, 0), (1, -1), (0, -1), (-1, -1), (-1, 0), (-1, 1))
_DIRECTION_INDEX = {offset: index for index, offset in enumerate(_DIRECTIONS)}
_EIGHT = np.ones((3, 3), dtype=bool)


def _trace(region: np.ndarray) -> list[tuple[int, int]]:
    """Moore-neighbour trace of the outer border of one region in a zero-padded bool array.

    Returns (row, col) pixels, starting from the topmost-leftmost one.
    """
    rows, cols = np.nonzero(region)
    start = (int(rows[0]), int(cols[0]))
    path = [start]
    current = start
    back = 4  # the west neighbour of the start pixel is background
    first_move = None
    for _ in range(8 * region.size + 8):
        for step in range(1, 9):
            direction = (back + step) % 8
            dy, dx = _DIRECTIONS[direction]
            if region[current[0] + dy, current[1] + dx]:
                break
        else:
            return path
        if current == start:
            if first_move is None:
                first_move = direction
            elif direction == first_move:
                path.pop()
                return path
        pdy, pdx = _DIRECTIONS[(direction - 1) % 8]
        back = _DIRECTION_INDEX[(pdy - dy, pdx - dx)]
        current = (current[0] + dy, current[1] + dx)
        path.append(current)
    return path


def _trace_labels(labels: np.ndarray) -> list[list[tuple[int, int]]]:
    contours = []
    for index, window in enumerate(ndimage.find_objects(labels), start=1):
        if window is None:
            continue
        region = np.pad(labels[window] == index, 1)
        top = window[0].start - 1
        left = window[1].start - 1
        contours.append([(col + left, row + top) for row, col in _trace(region)])
    return contours


def _compress(path: list[tuple[int, int]]) -> list[tuple[int, int]]:
    """Keep only the points where the direction of travel changes."""
    if len(path) < 3:
        return path
    kept = [
        point
        for prev, point, nxt in zip(path[-1:] + path[:-1], path, path[1:] + path[:1])
        if (point[0] - prev[0], point[1] - prev[1]) != (nxt[0] - point[0], nxt[1] - point[1])
    ]
    return kept or path[:1]


def find_contours(mask, mode=RetrievalMode.EXTERNAL, simple=True) -> list[list[tuple[int, int]]]:
    """Trace the borders of the non-zero regions of a mask.

    EXTERNAL gives only the outer borders of top-level regions; LIST and CCOMP give the
    outer borders of every region together with the borders of the holes. With ``simple``
    straight runs are reduced to their end points. Contours come in raster order of their
    first point.
    """
    foreground = np.asarray(mask) != 0
    if foreground.ndim != 2:
        raise ValueError(f"find_contours needs a single-channel mask, got shape {foreground.shape}")
    mode = RetrievalMode(mode)

    if mode is RetrievalMode.EXTERNAL:
        outer, _ = ndimage.label(ndimage.binary_fill_holes(foreground), structure=_EIGHT)
        traced = _trace_labels(outer)
    else:
        regions, _ = ndimage.label(foreground, structure=_EIGHT)
        traced = _trace_labels(regions)
        holes, _ = ndimage.label(~foreground)
        edge_labels = np.unique(
            np.concatenate([holes[0, :], holes[-1, :], holes[:, 0], holes[:, -1]])
        )
        holes[np.isin(holes, edge_labels)] = 0
        traced.extend(_trace_labels(holes))

    traced.sort(key=lambda contour: (contour[0][1], contour[0][0]))
    return [_compress(contour) if simple else contour for contour in traced]


def _rounded(points) -> list[tuple[int, int]]:
    return [(int(round(float(x))), int(round(float(y)))) for x, y in points]


def _paint(image, value, draw_shapes) -> np.ndarray:
    out = np.array(image, copy=True)
    height, width = out.shape[:2]
    canvas = Image.new("1", (width, height), 0)
    draw_shapes(ImageDraw.Draw(canvas))
    out[np.asarray(canvas, dtype=bool)] = value
    return out


def fill_poly(image, polygons, value) -> np.ndarray:
    """Return a copy of the image with each polygon filled, borders included."""

    def shapes(draw: ImageDraw.ImageDraw) -> None:
        for polygon in polygons:
            points = _rounded(polygon)
            if len(points) == 1:
                draw.point(points, fill=1)
            elif len(points) == 2:
                draw.line(points, fill=1)
            elif points:
                draw.polygon(points, fill=1, outline=1)

    return _paint(image, value, shapes)


def draw_polyline(image, points, closed, value, thickness=1) -> np.ndarray:
    """Return a copy of the image with a polyline drawn over it."""
    if thickness < 1:
        raise ValueError(f"thickness must be at least 1, got {thickness}")
    vertices = _rounded(points)
    if closed and len(vertices) > 1:
        vertices.append(vertices[0])

    def shapes(draw: ImageDraw.ImageDraw) -> None:
        if len(vertices) == 1:
            draw.point(vertices, fill=1)
        elif vertices:
            draw.line(vertices, fill=1, width=int(thickness), joint="curve" if thickness > 1 else None)

    return _paint(image, value, shapes)


def connected_components(mask) -> Components:
    """Label the 8-connected non-zero regions and measure their areas and centroids."""
    foreground = np.asarray(mask) != 0
    if foreground.ndim != 2:
        raise ValueError(f"connected_components needs a single-channel mask, got shape {foreground.shape}")
    labels, count = ndimage.label(foreground, structure=_EIGHT)
    flat = labels.ravel()
    total = count + 1
    areas = np.bincount(flat, minlength=total)
    ys, xs = np.indices(labels.shape)
    sum_x = np.bincount(flat, weights=xs.ravel(), minlength=total)
    sum_y = np.bincount(flat, weights=ys.ravel(), minlength=total)
    safe = np.where(areas > 0, areas, 1)
    centroids = np.stack([sum_x / safe, sum_y / safe], axis=1)
    centroids[areas == 0] = np.nan
    return Components(labels=labels.astype(np.int32), areas=areas, centroids=centroids)


def largest_contour(contours):
    """The contour enclosing the greatest positive area, or None if none encloses any."""
    best = None
    best_area = 0.0
    for contour in contours:
        area = contour_area(contour)
        if area > best_area:
            best, best_area = contour, area
    return best