"""Reading and writing raster images as BGR numpy arrays."""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
from PIL import Image, ImageOps

logger = logging.getLogger(__name__)

MIN_IMAGE_SIDE = 100


def read_image(path) -> np.ndarray:
    """Read an image file as an 8-bit three-channel BGR array.

    Grey, palette and alpha images are converted to colour; EXIF orientation is applied.
    Raises OSError when the file is missing or is not a readable image.
    """
    with Image.open(path) as img:
        img.load()
        upright = ImageOps.exif_transpose(img)
        rgb = upright.convert("RGB")
    return np.ascontiguousarray(np.asarray(rgb, dtype=np.uint8)[..., ::-1])


def _to_bytes(image: np.ndarray) -> np.ndarray:
    if image.dtype == bool:
        return np.where(image, 255, 0).astype(np.uint8)
    if image.dtype == np.uint8:
        return image
    return np.clip(np.rint(image.astype(np.float64)), 0, 255).astype(np.uint8)


def write_image(path, image) -> Path:
    """Write a BGR, BGRA or single-channel array to a file; the format follows the extension."""
    target = Path(path)
    data = _to_bytes(np.asarray(image))
    if data.ndim == 3 and data.shape[2] == 1:
        data = data[..., 0]
    if data.ndim == 2:
        pil = Image.fromarray(np.ascontiguousarray(data), mode="L")
    elif data.ndim == 3 and data.shape[2] == 3:
        pil = Image.fromarray(np.ascontiguousarray(data[..., ::-1]), mode="RGB")
    elif data.ndim == 3 and data.shape[2] == 4:
        rgba = data[..., [2, 1, 0, 3]]
        pil = Image.fromarray(np.ascontiguousarray(rgba), mode="RGBA")
        if target.suffix.lower() in (".jpg", ".jpeg"):
            pil = pil.convert("RGB")
    else:
        raise ValueError(f"cannot write an image of shape {data.shape}")
    pil.save(target)
    return target


def load_image(path) -> np.ndarray:
    """Load an input photograph, insisting on a usable size.

    Raises ValueError for an empty path or an image smaller than 100x100 pixels,
    and OSError when the file cannot be read.
    """
    if not path:
        raise ValueError("Image path cannot be empty")
    logger.info("Loading image from: %s", path)
    try:
        img = read_image(path)
    except OSError as exc:
        logger.error("Could not load image from %s", path)
        logger.error("Please check that the file exists and is a valid image format")
        raise OSError(f"Failed to load image: {path}") from exc
    rows, cols = img.shape[:2]
    if rows < MIN_IMAGE_SIDE or cols < MIN_IMAGE_SIDE:
        raise ValueError("Image too small (minimum 100x100 pixels required)")
    logger.info("Image loaded successfully. Shape: %d x %d", rows, cols)
    return img