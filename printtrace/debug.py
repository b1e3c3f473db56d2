"""Diagnostic images written while the pipeline runs."""

from __future__ import annotations

import logging
import random
from pathlib import Path

import numpy as np
from PIL import Image, ImageDraw

from .contours import draw_polyline
from .imagefile import write_image
from .imaging import gray_to_bgr

logger = logging.getLogger(__name__)

GREEN = (0, 255, 0)
RED = (0, 0, 255)


def _to_bgr(image) -> np.ndarray:
    img = np.asarray(image)
    if img.dtype == bool:
        img = np.where(img, 255, 0).astype(np.uint8)
    if img.ndim == 2:
        return gray_to_bgr(img)
    if img.ndim == 3 and img.shape[2] == 1:
        return gray_to_bgr(img[..., 0])
    return img.copy()


def _overlay(image: np.ndarray, color, paint) -> np.ndarray:
    height, width = image.shape[:2]
    canvas = Image.new("1", (width, height), 0)
    paint(ImageDraw.Draw(canvas))
    out = image.copy()
    out[np.asarray(canvas, dtype=bool)] = color
    return out


def _put_text(image: np.ndarray, text: str, origin, color) -> np.ndarray:
    """Draw text with its bottom-left corner at origin."""
    x, y = int(origin[0]), int(origin[1])

    def paint(draw: ImageDraw.ImageDraw) -> None:
        left, top, right, bottom = draw.textbbox((0, 0), text)
        draw.text((x, y - (bottom - top)), text, fill=1)

    return _overlay(image, color, paint)


def _circle(image: np.ndarray, centre, radius: int, color) -> np.ndarray:
    x, y = int(round(float(centre[0]))), int(round(float(centre[1])))

    def paint(draw: ImageDraw.ImageDraw) -> None:
        draw.ellipse([x - radius, y - radius, x + radius, y + radius], fill=1)

    return _overlay(image, color, paint)


def _centroid(contour):
    pts = np.asarray(contour, dtype=float).reshape(-1, 2)
    if len(pts) < 3:
        return None
    x, y = pts[:, 0], pts[:, 1]
    xn, yn = np.roll(x, -1), np.roll(y, -1)
    cross = x * yn - xn * y
    m00 = cross.sum() / 2.0
    if m00 == 0:
        return None
    m10 = ((x + xn) * cross).sum() / 6.0
    m01 = ((y + yn) * cross).sum() / 6.0
    return int(m10 / m00), int(m01 / m00)


def _write(image, filename: str, params, what: str):
    Path(params.debug_output_path).mkdir(parents=True, exist_ok=True)
    full_path = params.debug_output_path + filename
    try:
        written = write_image(full_path, image)
    except (OSError, ValueError):
        logger.warning("Failed to save %s: %s", what, full_path)
        return None
    logger.debug("Saved %s: %s", what, full_path)
    return written


def save_debug_image(image, filename, params):
    """Save an image under the debug directory; returns its path, or None when disabled or failed."""
    if not params.enable_debug_output:
        return None
    return _write(image, filename, params, "debug image")


def save_debug_image_with_contours(image, contours, filename, params):
    """Save the image with every contour drawn in a random colour and labelled with its index."""
    if not params.enable_debug_output:
        return None
    debug_img = _to_bgr(image)
    for index, contour in enumerate(contours):
        color = (random.randrange(256), random.randrange(256), random.randrange(256))
        if len(contour) == 0:
            continue
        debug_img = draw_polyline(debug_img, contour, True, color, 2)
        centre = _centroid(contour)
        if centre is not None:
            debug_img = _put_text(debug_img, str(index), centre, color)
    return _write(debug_img, filename, params, f"contour debug image ({len(contours)} contours)")


def save_debug_image_with_boundary(image, boundary, filename, params):
    """Save the image with the boundary in green and each vertex marked and numbered in red."""
    if not params.enable_debug_output:
        return None
    debug_img = _to_bgr(image)
    if len(boundary):
        debug_img = draw_polyline(debug_img, boundary, True, GREEN, 3)
    for index, point in enumerate(boundary):
        debug_img = _circle(debug_img, point, 8, RED)
        debug_img = _put_text(debug_img, str(index), (point[0] + 10, point[1] - 10), RED)
    return _write(debug_img, filename, params, f"boundary debug image ({len(boundary)} points)")


def save_debug_image_with_clean_contour(image, contour, filename, params):
    """Save the image with just the contour outlined in green."""
    if not params.enable_debug_output:
        return None
    debug_img = _to_bgr(image)
    if len(contour):
        debug_img = draw_polyline(debug_img, contour, True, GREEN, 3)
    return _write(debug_img, filename, params, f"clean contour debug image ({len(contour)} points)")


def push_debug_image(image, name, params) -> None:
    """Queue a copy of the image for the next flush (needs debug output and verbose output)."""
    if not params.enable_debug_output or not params.verbose_output:
        return
    params.debug_image_stack.append((np.array(image, copy=True), name))


def push_debug_contour(image, contour, name, params) -> None:
    """Queue the image with the contour drawn over it in green."""
    if not params.enable_debug_output or not params.verbose_output:
        return
    debug_img = _to_bgr(image)
    if len(contour):
        debug_img = draw_polyline(debug_img, contour, True, GREEN, 3)
    params.debug_image_stack.append((debug_img, name))


def flush_debug_stack(params) -> list[Path]:
    """Write queued images as 01_name.jpg, 02_name.jpg, ... and empty the queue."""
    if not params.enable_debug_output or not params.debug_image_stack:
        return []
    logger.debug("Flushing %d debug images...", len(params.debug_image_stack))
    Path(params.debug_output_path).mkdir(parents=True, exist_ok=True)
    saved = []
    for number, (image, name) in enumerate(params.debug_image_stack, start=1):
        filename = f"{number:02d}"[:3] + "_" + name + ".jpg"
        full_path = params.debug_output_path + filename
        try:
            saved.append(write_image(full_path, image))
            logger.debug("Saved: %s", filename)
        except (OSError, ValueError):
            logger.warning("Failed to save: %s", filename)
    params.debug_image_stack.clear()
    logger.debug("Debug stack flushed and cleared")
    return saved