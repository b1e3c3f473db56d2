"""Perspective transforms, sub-pixel corner refinement and Hough line detection."""

from __future__ import annotations

import math

import numpy as np
from scipy import ndimage


def _pair(size) -> tuple[int, int]:
    if isinstance(size, (int, np.integer)):
        return int(size), int(size)
    width, height = size
    return int(width), int(height)


def _cast(values: np.ndarray, dtype) -> np.ndarray:
    dtype = np.dtype(dtype)
    if dtype == bool:
        return values > 0.5
    if np.issubdtype(dtype, np.integer):
        info = np.iinfo(dtype)
        return np.clip(np.rint(values), info.min, info.max).astype(dtype)
    return values.astype(dtype)


def perspective_transform(src, dst) -> np.ndarray:
    """The 3x3 homography mapping four source points onto four destination points."""
    source = np.asarray(src, dtype=float).reshape(-1, 2)
    target = np.asarray(dst, dtype=float).reshape(-1, 2)
    if len(source) != 4 or len(target) != 4:
        raise ValueError("perspective_transform needs exactly four point pairs")
    rows = []
    rhs = []
    for (x, y), (u, v) in zip(source, target):
        rows.append([x, y, 1.0, 0.0, 0.0, 0.0, -u * x, -u * y])
        rows.append([0.0, 0.0, 0.0, x, y, 1.0, -v * x, -v * y])
        rhs.extend([u, v])
    system = np.array(rows)
    condition = np.linalg.cond(system)
    if not np.isfinite(condition) or condition > 1e12:
        raise ValueError("points are degenerate; no unique perspective transform")
    try:
        solution = np.linalg.solve(system, np.array(rhs))
    except np.linalg.LinAlgError as exc:
        raise ValueError("points are degenerate; no unique perspective transform") from exc
    return np.append(solution, 1.0).reshape(3, 3)


def warp_perspective(image, matrix, size) -> np.ndarray:
    """Resample an image through a homography into an output of size (width, height).

    Bilinear interpolation; pixels that map outside the source are zero.
    """
    img = np.asarray(image)
    width, height = _pair(size)
    if width <= 0 or height <= 0:
        raise ValueError(f"output size must be positive, got {size}")
    try:
        inverse = np.linalg.inv(np.asarray(matrix, dtype=float))
    except np.linalg.LinAlgError as exc:
        raise ValueError("transform matrix is singular") from exc

    ys, xs = np.mgrid[0:height, 0:width].astype(float)
    mapped = inverse @ np.stack([xs.ravel(), ys.ravel(), np.ones(xs.size)])
    w = mapped[2]
    valid = np.abs(w) > 1e-12
    safe = np.where(valid, w, 1.0)
    outside = -10.0
    src_x = np.where(valid, mapped[0] / safe, outside).reshape(height, width)
    src_y = np.where(valid, mapped[1] / safe, outside).reshape(height, width)

    data = img.astype(np.float64)

    def sample(plane: np.ndarray) -> np.ndarray:
        return ndimage.map_coordinates(plane, [src_y, src_x], order=1, mode="constant", cval=0.0)

    if data.ndim == 2:
        out = sample(data)
    else:
        out = np.stack([sample(data[..., channel]) for channel in range(data.shape[2])], axis=-1)
    return _cast(out, img.dtype)


def _window_weights(win_w: int, win_h: int, zero_w: int, zero_h: int) -> np.ndarray:
    wx = np.exp(-((np.arange(-win_w, win_w + 1) / win_w) ** 2))
    wy = np.exp(-((np.arange(-win_h, win_h + 1) / win_h) ** 2))
    weights = np.outer(wy, wx)
    if zero_w >= 0 and zero_h >= 0:
        weights[win_h - zero_h : win_h + zero_h + 1, win_w - zero_w : win_w + zero_w + 1] = 0.0
    return weights


def corner_sub_pix(gray, corners, win_size, zero_zone=-1, max_iter=30, eps=0.1) -> list[tuple[float, float]]:
    """Refine corner positions to sub-pixel accuracy from image gradients in a window.

    ``win_size`` is the half size of the search window; ``zero_zone`` the half size of a
    central dead zone (negative for none). A point that wanders farther than the window
    from where it started is reset to its start.
    """
    img = np.asarray(gray, dtype=float)
    if img.ndim != 2:
        raise ValueError("corner_sub_pix needs a single-channel image")
    win_w, win_h = _pair(win_size)
    if win_w <= 0 or win_h <= 0:
        raise ValueError(f"win_size must be positive, got {win_size}")
    zero_w, zero_h = _pair(zero_zone)
    weights = _window_weights(win_w, win_h, zero_w, zero_h)
    off_y, off_x = np.meshgrid(
        np.arange(-win_h - 1, win_h + 2, dtype=float),
        np.arange(-win_w - 1, win_w + 2, dtype=float),
        indexing="ij",
    )
    py = np.arange(-win_h, win_h + 1, dtype=float)[:, np.newaxis]
    px = np.arange(-win_w, win_w + 1, dtype=float)[np.newaxis, :]
    height, width = img.shape
    tiny = np.finfo(float).eps ** 2

    refined = []
    for x0, y0 in np.asarray(corners, dtype=float).reshape(-1, 2):
        cx, cy = float(x0), float(y0)
        for _ in range(max(int(max_iter), 1)):
            patch = ndimage.map_coordinates(img, [cy + off_y, cx + off_x], order=1, mode="nearest")
            gx = patch[1:-1, 2:] - patch[1:-1, :-2]
            gy = patch[2:, 1:-1] - patch[:-2, 1:-1]
            gxx = gx * gx * weights
            gxy = gx * gy * weights
            gyy = gy * gy * weights
            a, b, c = gxx.sum(), gxy.sum(), gyy.sum()
            bb1 = (gxx * px + gxy * py).sum()
            bb2 = (gxy * px + gyy * py).sum()
            det = a * c - b * b
            if abs(det) <= tiny:
                break
            nx = cx + (c * bb1 - b * bb2) / det
            ny = cy + (-b * bb1 + a * bb2) / det
            err = (nx - cx) ** 2 + (ny - cy) ** 2
            cx, cy = float(nx), float(ny)
            if cx < 0 or cx >= width or cy < 0 or cy >= height:
                break
            if err <= eps * eps:
                break
        if abs(cx - x0) > win_w or abs(cy - y0) > win_h:
            cx, cy = float(x0), float(y0)
        refined.append((cx, cy))
    return refined


def hough_lines(edges, rho, theta, threshold) -> list[tuple[float, float]]:
    """Standard Hough transform: (rho, theta) lines with more than ``threshold`` votes, strongest first."""
    img = np.asarray(edges)
    if img.ndim != 2:
        raise ValueError("hough_lines needs a single-channel image")
    if rho <= 0 or theta <= 0:
        raise ValueError("rho and theta resolutions must be positive")
    height, width = img.shape
    num_angle = max(int(round(math.pi / theta)), 1)
    num_rho = int(round(((width + height) * 2 + 1) / rho))
    angles = np.arange(num_angle) * theta

    ys, xs = np.nonzero(img)
    accumulator = np.zeros((num_angle, num_rho), dtype=np.int64)
    if len(xs):
        projected = (
            np.outer(np.cos(angles) / rho, xs) + np.outer(np.sin(angles) / rho, ys)
        )
        r_index = np.rint(projected).astype(np.int64) + (num_rho - 1) // 2
        valid = (r_index >= 0) & (r_index < num_rho)
        flat = (np.arange(num_angle)[:, np.newaxis] * num_rho + r_index)[valid]
        accumulator = np.bincount(flat, minlength=num_angle * num_rho).reshape(num_angle, num_rho)

    padded = np.pad(accumulator, 1)
    centre = padded[1:-1, 1:-1]
    peak = (
        (centre > threshold)
        & (centre > padded[1:-1, :-2])
        & (centre >= padded[1:-1, 2:])
        & (centre > padded[:-2, 1:-1])
        & (centre >= padded[2:, 1:-1])
    )
    n_idx, r_idx = np.nonzero(peak)
    votes = centre[n_idx, r_idx]
    order = np.lexsort((n_idx * num_rho + r_idx, -votes))
    return [
        (float((r_idx[k] - (num_rho - 1) * 0.5) * rho), float(n_idx[k] * theta))
        for k in order
    ]


def intersect_lines(line1, line2):
    """Intersection point of two (rho, theta) lines, or None when they are nearly parallel."""
    rho1, theta1 = line1
    rho2, theta2 = line2
    cos1, sin1 = math.cos(theta1), math.sin(theta1)
    cos2, sin2 = math.cos(theta2), math.sin(theta2)
    det = cos1 * sin2 - sin1 * cos2
    if abs(det) < 0.001:
        return None
    x = (sin2 * rho1 - sin1 * rho2) / det
    y = (cos1 * rho2 - cos2 * rho1) / det
    return (x, y)