"""Pixel-level image operations: colour conversion, thresholding, filtering, morphology and edges.

Images are numpy arrays in row-major (height, width[, channels]) layout with BGR channel order.
"""

from __future__ import annotations

import math
from enum import Enum

import numpy as np
from scipy import ndimage


class KernelShape(Enum):
    """Shape of a morphological structuring element."""

    RECT = "rect"
    CROSS = "cross"
    ELLIPSE = "ellipse"


_RGB_TO_XYZ = np.array(
    [
        [0.412453, 0.357580, 0.180423],
        [0.212671, 0.715160, 0.072169],
        [0.019334, 0.119193, 0.950227],
    ]
)
_WHITE_D65 = np.array([0.950456, 1.0, 1.088754])

_FIXED_GAUSSIAN = {
    1: [1.0],
    3: [0.25, 0.5, 0.25],
    5: [0.0625, 0.25, 0.375, 0.25, 0.0625],
    7: [0.03125, 0.109375, 0.21875, 0.28125, 0.21875, 0.109375, 0.03125],
}


def _cast_like(values: np.ndarray, dtype) -> np.ndarray:
    dtype = np.dtype(dtype)
    if np.issubdtype(dtype, np.integer):
        info = np.iinfo(dtype)
        return np.clip(np.rint(values), info.min, info.max).astype(dtype)
    return values.astype(dtype)


def _pair(size) -> tuple[int, int]:
    if isinstance(size, (int, np.integer)):
        return int(size), int(size)
    width, height = size
    return int(width), int(height)


def _require_odd(name: str, value: int, minimum: int = 1) -> None:
    if value < minimum or value % 2 == 0:
        raise ValueError(f"{name} must be odd and at least {minimum}, got {value}")


def _spatial(image: np.ndarray, axis_weights) -> list:
    """Per-axis sizes for filters that must not mix colour channels."""
    return list(axis_weights) + [1] * (image.ndim - 2)


def to_grayscale(image) -> np.ndarray:
    """Convert a BGR (or BGRA) image to single-channel luminance."""
    img = np.asarray(image)
    if img.ndim == 2:
        return img.copy()
    if img.ndim != 3 or img.shape[2] not in (3, 4):
        raise ValueError(f"expected a BGR image, got shape {img.shape}")
    b = img[..., 0].astype(np.float64)
    g = img[..., 1].astype(np.float64)
    r = img[..., 2].astype(np.float64)
    return _cast_like(0.114 * b + 0.587 * g + 0.299 * r, img.dtype)


def gray_to_bgr(image) -> np.ndarray:
    """Replicate a single-channel image into three BGR channels."""
    img = np.asarray(image)
    if img.ndim != 2:
        raise ValueError(f"expected a single-channel image, got shape {img.shape}")
    return np.repeat(img[..., np.newaxis], 3, axis=2)


def bgr_to_lab(image) -> np.ndarray:
    """Convert BGR to CIE L*a*b* (D65).

    8-bit input gives 8-bit output with L scaled to 0..255 and a, b offset by 128;
    floating-point input in 0..1 gives L in 0..100 and signed a, b.
    """
    img = np.asarray(image)
    if img.ndim != 3 or img.shape[2] < 3:
        raise ValueError(f"expected a BGR image, got shape {img.shape}")
    is_byte = img.dtype == np.uint8
    bgr = img[..., :3].astype(np.float64)
    if is_byte:
        bgr = bgr / 255.0
    rgb = np.clip(bgr[..., ::-1], 0.0, None)
    linear = np.where(rgb <= 0.04045, rgb / 12.92, ((rgb + 0.055) / 1.055) ** 2.4)
    xyz = (linear @ _RGB_TO_XYZ.T) / _WHITE_D65
    f = np.where(xyz > 0.008856, np.cbrt(xyz), 7.787 * xyz + 16.0 / 116.0)
    y = xyz[..., 1]
    lightness = np.where(y > 0.008856, 116.0 * f[..., 1] - 16.0, 903.3 * y)
    a = 500.0 * (f[..., 0] - f[..., 1])
    b = 200.0 * (f[..., 1] - f[..., 2])
    if is_byte:
        lab = np.stack([lightness * 255.0 / 100.0, a + 128.0, b + 128.0], axis=-1)
        return _cast_like(lab, np.uint8)
    return np.stack([lightness, a, b], axis=-1).astype(np.float32)


def _clip_histogram(hist: np.ndarray, limit: int) -> np.ndarray:
    excess = int(np.maximum(hist - limit, 0).sum())
    clipped = np.minimum(hist, limit)
    batch, residual = divmod(excess, 256)
    clipped += batch
    if residual:
        step = max(256 // residual, 1)
        clipped[np.arange(0, 256, step)[:residual]] += 1
    return clipped


def clahe(image, clip_limit=40.0, tile_size=8) -> np.ndarray:
    """Contrast Limited Adaptive Histogram Equalization of an 8-bit single-channel image."""
    img = np.asarray(image)
    if img.ndim != 2 or img.dtype != np.uint8:
        raise ValueError("clahe needs an 8-bit single-channel image")
    tiles_x, tiles_y = _pair(tile_size)
    if tiles_x <= 0 or tiles_y <= 0:
        raise ValueError(f"tile_size must be positive, got {tile_size}")
    height, width = img.shape

    padded = img
    if height % tiles_y or width % tiles_x:
        padded = np.pad(
            img,
            ((0, tiles_y - height % tiles_y), (0, tiles_x - width % tiles_x)),
            mode="reflect",
        )
    tile_h = padded.shape[0] // tiles_y
    tile_w = padded.shape[1] // tiles_x
    area = tile_h * tile_w
    count = tiles_x * tiles_y

    tiles = (
        padded[: tiles_y * tile_h, : tiles_x * tile_w]
        .reshape(tiles_y, tile_h, tiles_x, tile_w)
        .transpose(0, 2, 1, 3)
        .reshape(count, area)
        .astype(np.int64)
    )
    offsets = np.arange(count, dtype=np.int64)[:, np.newaxis] * 256
    hist = np.bincount((tiles + offsets).ravel(), minlength=count * 256).reshape(count, 256)

    if clip_limit > 0:
        limit = max(int(clip_limit * area / 256), 1)
        hist = np.stack([_clip_histogram(h, limit) for h in hist])

    luts = np.clip(np.rint(np.cumsum(hist, axis=1) * (255.0 / area)), 0, 255)
    luts = luts.reshape(tiles_y, tiles_x, 256)

    def axis_weights(n: int, tile: int, tiles: int):
        pos = np.arange(n) / tile - 0.5
        first = np.floor(pos).astype(int)
        frac = pos - first
        second = np.minimum(first + 1, tiles - 1)
        first = np.maximum(first, 0)
        return first, second, frac

    x1, x2, xa = axis_weights(width, tile_w, tiles_x)
    y1, y2, ya = axis_weights(height, tile_h, tiles_y)
    values = img.astype(np.intp)
    rows1, rows2 = y1[:, np.newaxis], y2[:, np.newaxis]
    cols1, cols2 = x1[np.newaxis, :], x2[np.newaxis, :]
    top = luts[rows1, cols1, values] * (1 - xa) + luts[rows1, cols2, values] * xa
    bottom = luts[rows2, cols1, values] * (1 - xa) + luts[rows2, cols2, values] * xa
    result = top * (1 - ya)[:, np.newaxis] + bottom * ya[:, np.newaxis]
    return _cast_like(result, np.uint8)


def threshold(image, thresh, maxval, inverse=False) -> np.ndarray:
    """Binary threshold: maxval where the pixel exceeds thresh, 0 elsewhere (swapped if inverse)."""
    img = np.asarray(image)
    if img.dtype == bool:
        img = img.astype(np.uint8)
    if np.issubdtype(img.dtype, np.integer):
        thresh = math.floor(thresh)
    above = img > thresh
    mask = ~above if inverse else above
    out = np.where(mask, maxval, 0)
    return _cast_like(out, img.dtype)


def otsu_threshold(image) -> float:
    """Threshold value chosen by Otsu's method for an 8-bit image."""
    img = np.asarray(image)
    if img.dtype != np.uint8:
        raise ValueError("otsu_threshold needs an 8-bit image")
    if img.size == 0:
        return 0.0
    prob = np.bincount(img.ravel(), minlength=256).astype(np.float64) / img.size
    levels = np.arange(256, dtype=np.float64)
    omega = np.cumsum(prob)
    mu = np.cumsum(prob * levels)
    mu_total = mu[-1]
    eps = np.finfo(np.float32).eps
    valid = (np.minimum(omega, 1 - omega) >= eps) & (np.maximum(omega, 1 - omega) <= 1 - eps)
    sigma = np.zeros(256)
    w = omega[valid]
    sigma[valid] = (mu_total * w - mu[valid]) ** 2 / (w * (1 - w))
    if not sigma.any():
        return 0.0
    return float(np.argmax(sigma))


def in_range(image, low, high) -> np.ndarray:
    """255 where low <= pixel <= high, otherwise 0."""
    img = np.asarray(image)
    return np.where((img >= low) & (img <= high), 255, 0).astype(np.uint8)


def _gaussian_kernel(ksize: int, sigma: float) -> np.ndarray:
    if sigma <= 0 and ksize in _FIXED_GAUSSIAN:
        return np.array(_FIXED_GAUSSIAN[ksize])
    if sigma <= 0:
        sigma = 0.3 * ((ksize - 1) * 0.5 - 1) + 0.8
    x = np.arange(ksize) - (ksize - 1) / 2.0
    kernel = np.exp(-(x**2) / (2.0 * sigma * sigma))
    return kernel / kernel.sum()


def _gaussian_blur(image, sigma, ksize, mode: str) -> np.ndarray:
    img = np.asarray(image)
    if ksize is None or ksize <= 0:
        if sigma <= 0:
            raise ValueError("either a positive sigma or a kernel size is required")
        factor = 3 if img.dtype == np.uint8 else 4
        ksize = int(round(sigma * factor * 2 + 1)) | 1
    _require_odd("ksize", int(ksize))
    kernel = _gaussian_kernel(int(ksize), float(sigma))
    data = img.astype(np.float64)
    data = ndimage.correlate1d(data, kernel, axis=0, mode=mode)
    data = ndimage.correlate1d(data, kernel, axis=1, mode=mode)
    return _cast_like(data, img.dtype)


def gaussian_blur(image, sigma, ksize=None) -> np.ndarray:
    """Gaussian blur; the kernel size is derived from sigma when not given."""
    return _gaussian_blur(image, sigma, ksize, "mirror")


def median_blur(image, ksize) -> np.ndarray:
    """Median filter over a square window of odd size."""
    _require_odd("ksize", int(ksize), minimum=3)
    img = np.asarray(image)
    return ndimage.median_filter(img, size=_spatial(img, (ksize, ksize)), mode="nearest")


def adaptive_threshold(image, maxval, block_size, c, inverse=False) -> np.ndarray:
    """Threshold each pixel against the Gaussian-weighted mean of its neighbourhood minus c."""
    img = np.asarray(image)
    if img.ndim != 2 or img.dtype != np.uint8:
        raise ValueError("adaptive_threshold needs an 8-bit single-channel image")
    _require_odd("block_size", int(block_size), minimum=3)
    mean = _gaussian_blur(img, 0.0, int(block_size), "nearest").astype(np.int32)
    diff = img.astype(np.int32) - mean
    if inverse:
        mask = diff <= -math.floor(c)
    else:
        mask = diff > -math.ceil(c)
    return np.where(mask, maxval, 0).astype(np.uint8)


def structuring_element(shape, size) -> np.ndarray:
    """A 0/1 kernel of the given shape; size is an int or (width, height)."""
    width, height = _pair(size)
    if width <= 0 or height <= 0:
        raise ValueError(f"size must be positive, got {size}")
    shape = KernelShape(shape)
    if shape is KernelShape.RECT or width == 1 or height == 1:
        return np.ones((height, width), dtype=np.uint8)
    kernel = np.zeros((height, width), dtype=np.uint8)
    if shape is KernelShape.CROSS:
        kernel[height // 2, :] = 1
        kernel[:, width // 2] = 1
        return kernel
    r, c = height // 2, width // 2
    inv_r2 = 1.0 / (r * r) if r else 0.0
    for row in range(height):
        dy = row - r
        if abs(dy) <= r:
            dx = int(round(c * math.sqrt((r * r - dy * dy) * inv_r2)))
            kernel[row, max(c - dx, 0) : min(c + dx + 1, width)] = 1
    return kernel


def _extremes(dtype) -> tuple:
    if np.issubdtype(dtype, np.integer):
        info = np.iinfo(dtype)
        return info.min, info.max
    return -np.inf, np.inf


def _morph(image, kernel, iterations: int, dilating: bool) -> np.ndarray:
    img = np.asarray(image)
    as_bool = img.dtype == bool
    data = img.astype(np.uint8) if as_bool else img
    footprint = np.asarray(kernel).astype(bool)
    if data.ndim == 3:
        footprint = footprint[..., np.newaxis]
    low, high = _extremes(data.dtype)
    for _ in range(int(iterations)):
        if dilating:
            data = ndimage.maximum_filter(data, footprint=footprint, mode="constant", cval=low)
        else:
            data = ndimage.minimum_filter(data, footprint=footprint, mode="constant", cval=high)
    return data.astype(bool) if as_bool else data


def erode(image, kernel, iterations=1) -> np.ndarray:
    """Grey-level erosion (neighbourhood minimum) over the kernel's footprint."""
    return _morph(image, kernel, iterations, dilating=False)


def dilate(image, kernel, iterations=1) -> np.ndarray:
    """Grey-level dilation (neighbourhood maximum) over the kernel's footprint."""
    return _morph(image, kernel, iterations, dilating=True)


def morph_open(image, kernel) -> np.ndarray:
    """Erosion followed by dilation: removes small bright specks."""
    return dilate(erode(image, kernel), kernel)


def morph_close(image, kernel) -> np.ndarray:
    """Dilation followed by erosion: fills small dark holes."""
    return erode(dilate(image, kernel), kernel)


def _sobel_kernel(order: int, ksize: int) -> np.ndarray:
    kernel = np.array([1.0])
    for _ in range(ksize - order - 1):
        kernel = np.convolve(kernel, [1.0, 1.0])
    for _ in range(order):
        kernel = np.convolve(kernel, [-1.0, 1.0])
    return kernel


def _sobel(image, dx: int, dy: int, ksize: int) -> np.ndarray:
    _require_odd("ksize", ksize, minimum=3)
    if dx < 0 or dy < 0 or dx + dy == 0 or dx >= ksize or dy >= ksize:
        raise ValueError(f"invalid derivative orders dx={dx}, dy={dy} for ksize={ksize}")
    data = np.asarray(image).astype(np.float64)
    data = ndimage.correlate1d(data, _sobel_kernel(dx, ksize), axis=1, mode="mirror")
    data = ndimage.correlate1d(data, _sobel_kernel(dy, ksize), axis=0, mode="mirror")
    return data.astype(np.float32)


def sobel(image, dx, dy) -> np.ndarray:
    """3x3 Sobel derivative of the given orders, as float32."""
    return _sobel(image, int(dx), int(dy), 3)


def canny(image, low, high, aperture=3) -> np.ndarray:
    """Canny edge map (0/255) using the L1 gradient norm and 8-connected hysteresis."""
    img = np.asarray(image)
    if img.ndim != 2:
        raise ValueError("canny needs a single-channel image")
    if aperture not in (3, 5, 7):
        raise ValueError(f"aperture must be 3, 5 or 7, got {aperture}")
    if low > high:
        low, high = high, low

    gx = _sobel(img, 1, 0, aperture).astype(np.float64)
    gy = _sobel(img, 0, 1, aperture).astype(np.float64)
    ax, ay = np.abs(gx), np.abs(gy)
    mag = ax + ay
    height, width = mag.shape
    padded = np.pad(mag, 1)

    def neighbour(dy: int, dx: int) -> np.ndarray:
        return padded[1 + dy : 1 + dy + height, 1 + dx : 1 + dx + width]

    horizontal = ay < ax * math.tan(math.pi / 8)
    vertical = ay > ax * math.tan(3 * math.pi / 8)
    diagonal = ~(horizontal | vertical)
    same_sign = (gx * gy) >= 0

    peak = horizontal & (mag > neighbour(0, -1)) & (mag >= neighbour(0, 1))
    peak |= vertical & (mag > neighbour(-1, 0)) & (mag >= neighbour(1, 0))
    peak |= diagonal & same_sign & (mag > neighbour(-1, -1)) & (mag > neighbour(1, 1))
    peak |= diagonal & ~same_sign & (mag > neighbour(-1, 1)) & (mag > neighbour(1, -1))

    candidate = peak & (mag > low)
    strong = candidate & (mag > high)
    labels, count = ndimage.label(candidate, structure=np.ones((3, 3), dtype=bool))
    keep = np.zeros(count + 1, dtype=bool)
    keep[np.unique(labels[strong])] = True
    keep[0] = False
    return np.where(keep[labels], 255, 0).astype(np.uint8)