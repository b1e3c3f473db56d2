"""Detection of the backlit lightbox (the paper sheet) and its four corners in a photograph."""

from __future__ import annotations

import logging
import math

import numpy as np

from .contours import RetrievalMode, fill_poly, find_contours, largest_contour
from .debug import save_debug_image
from .geometry import approx_poly_dp, arc_length, bounding_rect, contour_area, order_corners
from .imaging import (
    KernelShape,
    adaptive_threshold,
    bgr_to_lab,
    canny,
    clahe,
    gaussian_blur,
    in_range,
    morph_close,
    morph_open,
    otsu_threshold,
    sobel,
    structuring_element,
    threshold,
    to_grayscale,
)
from .transform import hough_lines, intersect_lines

logger = logging.getLogger(__name__)

EDGE_ENERGY_THRESHOLD = 10.0
COLOR_IMBALANCE_LIMIT = 0.3


def _is_color(image: np.ndarray) -> bool:
    return image.ndim == 3 and image.shape[2] == 3


def _aspect_ratio(points) -> float:
    rect = bounding_rect(points)
    ratio = rect.width / rect.height
    return 1.0 / ratio if ratio < 1.0 else ratio


def apply_clahe_to_l(lab, params) -> np.ndarray:
    """Boost local contrast of the L channel of an 8-bit LAB image, leaving a and b untouched."""
    logger.info("Applying CLAHE to L channel for local contrast enhancement")
    source = np.asarray(lab)
    enhanced = source.copy()
    enhanced[..., 0] = clahe(
        np.ascontiguousarray(source[..., 0]), params.clahe_clip_limit, params.clahe_tile_size
    )
    return enhanced


def division_normalization(lab) -> np.ndarray:
    """Divide the L channel by a heavy blur of itself to flatten broad lighting gradients."""
    logger.info("Applying division normalization to flatten lighting gradients")
    lightness = np.asarray(lab)[..., 0]
    sigma = min(lightness.shape) * 0.05
    blurred = gaussian_blur(lightness, sigma)
    blurred = np.minimum(blurred.astype(np.float32) + 1.0, 255.0)
    normalized = lightness.astype(np.float32) / blurred * 128.0
    return np.clip(np.rint(normalized), 0, 255).astype(np.uint8)


def build_paper_mask(lab, normalized_l, params) -> np.ndarray:
    """Mask of bright, colour-neutral pixels, widened by an adaptive threshold for shadowed paper."""
    logger.info("Building paper mask with L threshold + A/B inRange + adaptive fallback")
    source = np.asarray(lab)
    lightness, a, b = source[..., 0], source[..., 1], source[..., 2]
    mask_l = threshold(lightness, params.lab_l_thresh, 255).astype(np.uint8)
    mask_a = in_range(a, params.lab_a_min, params.lab_a_max)
    mask_b = in_range(b, params.lab_b_min, params.lab_b_max)
    paper = mask_l & mask_a & mask_b
    save_debug_image(paper, "paper_mask_lab.jpg", params)

    adaptive = adaptive_threshold(np.asarray(normalized_l), 255, 21, 10)
    combined = paper | adaptive
    save_debug_image(combined, "paper_mask_with_adaptive.jpg", params)
    return combined


def morphological_cleanup(mask, params) -> np.ndarray:
    """Close then open the mask and keep only its largest region, filled."""
    logger.info("Applying morphological close->open and selecting largest component")
    kernel = structuring_element(KernelShape.RECT, params.large_kernel)
    cleaned = morph_close(np.asarray(mask).astype(np.uint8), kernel)
    save_debug_image(cleaned, "mask_closed.jpg", params)
    cleaned = morph_open(cleaned, kernel)
    save_debug_image(cleaned, "mask_opened.jpg", params)

    contours = find_contours(cleaned, RetrievalMode.EXTERNAL)
    if contours:
        largest = largest_contour(contours)
        component = np.zeros(cleaned.shape, dtype=np.uint8)
        if largest is not None:
            component = fill_poly(component, [largest], 255)
            logger.info("Kept largest component with area: %s", contour_area(largest))
        cleaned = component

    save_debug_image(cleaned, "largest_component.jpg", params)
    return cleaned


def detect_corners_from_contour(mask, params) -> list[tuple[float, float]]:
    """Four corners of the largest region, if it simplifies to a plausible quadrilateral; else []."""
    logger.info("Detecting corners using contour-based method with geometric sanity checks")
    mask = np.asarray(mask)
    contours = find_contours(mask, RetrievalMode.EXTERNAL)
    if not contours:
        logger.warning("No contours found for corner detection")
        return []
    paper = largest_contour(contours)
    if paper is None:
        return []

    perimeter = arc_length(paper, True)
    epsilon = 0.02 * perimeter
    approx: list[tuple] = []
    for _ in range(10):
        approx = approx_poly_dp(paper, epsilon, True)
        if len(approx) == 4:
            break
        if len(approx) > 4:
            epsilon += 0.01 * perimeter
        else:
            epsilon -= 0.005 * perimeter
            if epsilon <= 0.005 * perimeter:
                break

    if len(approx) == 4:
        rect = bounding_rect(approx)
        area = contour_area(approx)
        solidity = area / (rect.width * rect.height)
        aspect = _aspect_ratio(approx)
        logger.info(
            "Corner detection - Area: %s, Solidity: %s, Aspect ratio: %s", area, solidity, aspect
        )
        if (
            area > mask.shape[0] * mask.shape[1] * 0.1
            and solidity > params.min_solidity
            and aspect < params.max_aspect_ratio
        ):
            logger.info("Contour-based corner detection successful")
            return [(float(x), float(y)) for x, y in approx]
        logger.warning("Contour failed geometric sanity checks")

    logger.warning("Contour-based corner detection failed")
    return []


def detect_corners_from_edges(normalized_l, params) -> list[tuple[float, float]]:
    """Corners from the outermost near-horizontal and near-vertical Hough lines; else []."""
    logger.info("Edge-based fallback using Canny + HoughLines + clustering")
    image = np.asarray(normalized_l)
    edges = canny(image, params.canny_lower, params.canny_upper, params.canny_aperture)
    save_debug_image(edges, "canny_edges.jpg", params)

    lines = hough_lines(edges, 1, math.pi / 180, 50)
    if len(lines) < 4:
        logger.warning("Not enough lines detected for corner finding: %d", len(lines))
        return []
    logger.info("Detected %d lines with Hough transform", len(lines))

    horizontal = []
    vertical = []
    for line in lines:
        degrees = math.degrees(line[1])
        if abs(degrees) < 20 or abs(degrees - 180) < 20:
            horizontal.append(line)
        elif abs(degrees - 90) < 20:
            vertical.append(line)
    logger.info("Found %d horizontal and %d vertical lines", len(horizontal), len(vertical))
    if len(horizontal) < 2 or len(vertical) < 2:
        logger.warning("Not enough horizontal or vertical lines for corner detection")
        return []

    horizontal.sort(key=lambda line: line[0])
    vertical.sort(key=lambda line: line[0])
    top, bottom = horizontal[0], horizontal[-1]
    left, right = vertical[0], vertical[-1]

    height, width = image.shape[:2]
    candidates = [
        intersect_lines(top, left),
        intersect_lines(top, right),
        intersect_lines(bottom, right),
        intersect_lines(bottom, left),
    ]
    corners = [
        (float(p[0]), float(p[1]))
        for p in candidates
        if p is not None and 0 <= p[0] < width and 0 <= p[1] < height
    ]
    if len(corners) == 4:
        logger.info("Edge-based corner detection successful")
        return corners
    logger.warning("Edge-based corner detection failed - found %d valid corners", len(corners))
    return []


def validate_corners(corners, image_size, params) -> bool:
    """Check four corners lie in an image of (width, height) and span a plausible sheet."""
    logger.info("Validating detected corners")
    points = [(float(x), float(y)) for x, y in corners]
    if len(points) != 4:
        logger.error("Invalid number of corners: %d", len(points))
        return False
    width, height = image_size
    for x, y in points:
        if x < 0 or y < 0 or x >= width or y >= height:
            logger.error("Corner out of bounds: (%s,%s)", x, y)
            return False
    area = contour_area(points)
    min_area = width * height * 0.1
    if area < min_area:
        logger.error("Corner area too small: %s < %s", area, min_area)
        return False
    aspect = _aspect_ratio(points)
    if aspect > params.max_aspect_ratio:
        logger.error("Aspect ratio too extreme: %s > %s", aspect, params.max_aspect_ratio)
        return False
    logger.info("Corner validation passed")
    return True


def validate_warped_image(warped, params):
    """Log warnings for a blurry or colour-cast warped image; the image is returned unchanged."""
    logger.info("Post-warp validation: checking edge energy and chromatic sanity")
    image = np.asarray(warped)
    gray = to_grayscale(image) if _is_color(image) else image
    gx = sobel(gray, 1, 0)
    gy = sobel(gray, 0, 1)
    energy = float(np.hypot(gx, gy).mean())
    if energy < EDGE_ENERGY_THRESHOLD:
        logger.warning("Low edge energy detected: %s < %s", energy, EDGE_ENERGY_THRESHOLD)
        logger.warning("Warped image may be blurry or incorrectly perspective-corrected")
    else:
        logger.info("Edge energy validation passed: %s", energy)

    if _is_color(image):
        mean_b, mean_g, mean_r = (float(image[..., c].mean()) for c in range(3))
        max_diff = max(abs(mean_b - mean_g), abs(mean_g - mean_r), abs(mean_r - mean_b))
        average = (mean_b + mean_g + mean_r) / 3.0
        balance = max_diff / average if average else 0.0
        if balance > COLOR_IMBALANCE_LIMIT:
            logger.warning("Significant color imbalance detected: %s", balance)
            logger.warning("Image may have color cast or lighting issues")
        else:
            logger.info("Chromatic sanity check passed: %s", balance)

    save_debug_image(image, "validated_warped.jpg", params)
    return warped


def detect_lightbox_corners(bgr, params) -> list[tuple[float, float]]:
    """Full corner pipeline: ordered TL, TR, BR, BL corners of the sheet, or [] on failure."""
    logger.info("===== STREAMLINED CORNER DETECTION PIPELINE =====")
    image = np.asarray(bgr)
    lab = bgr_to_lab(image)
    save_debug_image(lab, "stream_lab.jpg", params)
    enhanced = apply_clahe_to_l(lab, params)
    save_debug_image(enhanced, "stream_clahe.jpg", params)
    normalized = division_normalization(enhanced)
    save_debug_image(normalized, "stream_division_norm.jpg", params)

    paper_mask = build_paper_mask(enhanced, normalized, params)
    clean_mask = morphological_cleanup(paper_mask, params)

    corners = detect_corners_from_contour(clean_mask, params)
    if not corners:
        logger.info("Contour-based detection failed, trying edge-based fallback")
        corners = detect_corners_from_edges(normalized, params)
    if not corners:
        logger.error("All corner detection methods failed")
        return []

    corners = order_corners(corners)
    if not validate_corners(corners, (image.shape[1], image.shape[0]), params):
        logger.error("Corner validation failed")
        return []
    logger.info("===== STREAMLINED CORNER DETECTION SUCCESSFUL =====")
    return corners


def detect_lightbox_boundary(gray, params) -> np.ndarray:
    """Edge map of the brightest region, thresholded 30% of the way above Otsu's level."""
    logger.info("Detecting lightbox boundary using intensity-based method")
    image = np.asarray(gray)
    otsu = otsu_threshold(image)
    logger.info("Otsu threshold for lightbox: %s", otsu)
    level = otsu + (255 - otsu) * 0.3
    binary = threshold(image, level, 255).astype(np.uint8)
    logger.info("Using lightbox threshold: %s", level)
    save_debug_image(binary, "lightbox_binary.jpg", params)

    kernel = structuring_element(KernelShape.RECT, 5)
    binary = morph_open(morph_close(binary, kernel), kernel)
    save_debug_image(binary, "lightbox_cleaned.jpg", params)

    edges = canny(binary, 50, 150, 3)
    logger.info("Lightbox boundary detection completed")
    return edges