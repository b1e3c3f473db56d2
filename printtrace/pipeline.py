"""End-to-end tracing pipeline: from a photograph on a lightbox to the object's outline."""

from __future__ import annotations

import logging
import math
from enum import IntEnum

import numpy as np

from .contours import RetrievalMode, draw_polyline, fill_poly, find_contours, largest_contour
from .debug import flush_debug_stack, push_debug_contour, push_debug_image
from .geometry import (
    approx_poly_dp,
    arc_length,
    bounding_rect,
    contour_area,
    convex_hull,
    min_area_rect,
)
from .imagefile import load_image
from .imaging import (
    KernelShape,
    bgr_to_lab,
    clahe,
    dilate,
    gaussian_blur,
    in_range,
    morph_close,
    morph_open,
    otsu_threshold,
    structuring_element,
    threshold,
    to_grayscale,
)
from .params import ProcessingParams
from .shaping import dilate_contour, find_object_contour, smooth_contour, validate_contour
from .transform import corner_sub_pix, perspective_transform, warp_perspective

logger = logging.getLogger(__name__)

CORNER_SEARCH_RADIUS = 50


class Stage(IntEnum):
    """How far :func:`process_image_to_stage` runs before returning."""

    LOADED = 0
    LIGHTBOX_CROPPED = 1
    NORMALIZED = 2
    BOUNDARY_DETECTED = 3
    OBJECT_DETECTED = 4
    SMOOTHED = 5
    DILATED = 6
    FINAL = 7


def _binary(image) -> np.ndarray:
    return np.asarray(image).astype(np.uint8)


def _float_points(points) -> list[tuple[float, float]]:
    return [(float(x), float(y)) for x, y in points]


def normalize_lighting(gray, params) -> np.ndarray:
    """Even out the lighting of a grey image with CLAHE."""
    logger.info("Normalizing lighting using CLAHE")
    result = clahe(np.asarray(gray), params.clahe_clip_limit, params.clahe_tile_size)
    logger.info("Lighting normalization completed")
    return result


def _paper_mask(gray: np.ndarray, color, params) -> np.ndarray:
    colour = None if color is None else np.asarray(color)
    if colour is not None and colour.size and colour.ndim == 3 and colour.shape[2] == 3:
        logger.info("Using LAB thresholding")
        lab = bgr_to_lab(colour)
        mask_l = _binary(threshold(lab[..., 0], params.lab_l_thresh, 255))
        mask_a = _binary(in_range(lab[..., 1], params.lab_a_min, params.lab_a_max))
        mask_b = _binary(in_range(lab[..., 2], params.lab_b_min, params.lab_b_max))
        return mask_l & mask_a & mask_b
    logger.info("Falling back to Otsu threshold")
    level = otsu_threshold(gray)
    return _binary(threshold(gray, level + params.otsu_offset, 255))


def _four_corners(contour) -> list[tuple[float, float]]:
    perimeter = arc_length(contour, True)
    epsilon = 0.02 * perimeter
    for _ in range(10):
        approx = approx_poly_dp(contour, epsilon, True)
        if len(approx) == 4:
            logger.info("Found 4-corner approximation with epsilon: %s", epsilon)
            logger.info("Using approxPolyDP result (preserves true border)")
            return _float_points(approx)
        if len(approx) > 4:
            epsilon += 0.005 * perimeter
        else:
            epsilon -= 0.002 * perimeter
            if epsilon <= 0.005 * perimeter:
                break
    logger.info("Using minAreaRect fallback (guarantees 4 corners)")
    return _float_points(min_area_rect(contour))


def detect_edges(gray, color, params) -> np.ndarray:
    """Image with just the outline of the paper sheet drawn on it (zeros if none is found)."""
    gray = np.asarray(gray)
    paper = _paper_mask(gray, color, params)
    push_debug_image(paper, "mask_lab", params)

    kernel = structuring_element(KernelShape.RECT, params.large_kernel)
    morph = morph_close(morph_open(paper, kernel), kernel)
    morph = _binary(morph)

    hole_mask = np.where(morph != 0, 0, 255).astype(np.uint8)
    holes = find_contours(hole_mask, RetrievalMode.LIST)
    limit = morph.size * params.hole_area_ratio
    small = [hole for hole in holes if contour_area(hole) < limit]
    if small:
        morph = fill_poly(morph, small, 255)
    push_debug_image(morph, "mask_clean", params)

    logger.info("Starting robust contour-based corner detection")
    empty = np.zeros(morph.shape[:2], dtype=np.uint8)
    contours = find_contours(morph, RetrievalMode.EXTERNAL)
    if not contours:
        logger.error("No contours found in clean mask")
        return empty
    paper_contour = largest_contour(contours)
    if paper_contour is None:
        logger.error("No valid contour found")
        return empty

    max_area = contour_area(paper_contour)
    fraction = max_area / morph.size
    if fraction < 0.1:
        logger.error("Contour too small (area fraction: %s)", fraction)
        return empty

    hull_area = contour_area(convex_hull(paper_contour))
    solidity = max_area / hull_area if hull_area else 0.0
    if solidity < 0.7:
        logger.warning("Low solidity detected: %s (may be fragmented)", solidity)
    logger.info("Paper contour validation - Area fraction: %s, Solidity: %s", fraction, solidity)

    corners = _four_corners(paper_contour)
    int_corners = [(int(x), int(y)) for x, y in corners]
    edges = draw_polyline(empty, int_corners, True, 255, 2)
    push_debug_image(edges, "paper_boundary", params)
    logger.info("Robust corner detection complete - found %d corners", len(corners))
    return edges


def find_boundary_contour(edges, params):
    """The external contour of the edge image with the largest bounding rectangle."""
    contours = find_contours(np.asarray(edges), RetrievalMode.EXTERNAL)
    if not contours:
        raise RuntimeError("No boundary contours found")
    best = contours[0]
    best_area = 0.0
    for contour in contours:
        rect = bounding_rect(contour)
        area = float(rect.width) * rect.height
        if area > best_area:
            best, best_area = contour, area
    return best


def refine_corners(corners, gray, params) -> list[tuple[float, float]]:
    """Four corners as floats, moved to sub-pixel positions when refinement is enabled."""
    points = _float_points(corners)
    if not params.enable_sub_pixel_refinement or len(points) != 4:
        logger.info("Skipping sub-pixel refinement")
        return points
    logger.info("Refining corners with sub-pixel accuracy")
    refined = corner_sub_pix(
        np.asarray(gray), points, params.corner_win_size, params.corner_zero_zone, 30, 0.1
    )
    logger.info("Sub-pixel corner refinement completed")
    return refined


def threshold_image(image, thresh_value) -> np.ndarray:
    """Binary threshold: pixels above the value become 255, the rest 0."""
    logger.info("Applying binary threshold with value: %s", thresh_value)
    return _binary(threshold(np.asarray(image), thresh_value, 255))


def _aspect_penalty(ratio: float) -> float:
    if ratio > 5.0 or ratio < 0.2:
        return 0.3
    if ratio > 3.0 or ratio < 0.33:
        return 0.7
    return 1.0


def find_largest_contour(binary):
    """The contour most likely to be the paper sheet, scored by area, shape and aspect ratio.

    Raises RuntimeError when the image has no contours at all.
    """
    logger.info("Finding contours in the binary image.")
    binary = np.asarray(binary)
    contours = find_contours(binary, RetrievalMode.EXTERNAL)
    if not contours:
        logger.error("No contours found in the image.")
        raise RuntimeError("No contours found in the image.")

    rows, cols = binary.shape[:2]
    border = 5
    best = None
    best_score = 0.0
    for contour in contours:
        area = contour_area(contour)
        if area < 1000:
            continue
        rect = bounding_rect(contour)
        width_ratio = rect.width / cols
        height_ratio = rect.height / rows
        if width_ratio > 0.95 or height_ratio > 0.95:
            continue
        touches_border = (
            rect.x <= border
            or rect.y <= border
            or rect.x + rect.width >= cols - border
            or rect.y + rect.height >= rows - border
        )
        if touches_border and (width_ratio > 0.9 or height_ratio > 0.9):
            continue

        approx = approx_poly_dp(contour, 0.02 * arc_length(contour, True), True)
        rectangularity = 1.0 if len(approx) == 4 else 0.8
        score = area / (rows * cols) * rectangularity * _aspect_penalty(rect.width / rect.height)
        if score > best_score:
            best, best_score = contour, score

    if best is None:
        logger.warning("Smart selection failed, falling back to largest area")
        best = max(contours, key=contour_area)
    logger.info("Found %d contours; selected one with score %s", len(contours), best_score)
    return best


def approximate_polygon(contour, epsilon_factor):
    """Douglas-Peucker simplification with a tolerance relative to the perimeter."""
    logger.info("Approximating contour to polygon.")
    return approx_poly_dp(contour, epsilon_factor * arc_length(contour, True), True)


def warp_image(image, corners, target_size, width_mm, height_mm):
    """Correct perspective so the four corners fill a (width, height) image.

    Returns the warped image and the average pixels per millimetre.
    """
    img = np.asarray(image)
    if img.size == 0:
        raise ValueError("Input image is empty")
    points = _float_points(corners)
    if len(points) != 4:
        logger.error("Expected 4 corners, but got %d", len(points))
        raise ValueError("Expected to find 4 corners in the contour.")
    width, height = (int(v) for v in target_size)
    if width <= 0 or height <= 0 or width_mm <= 0 or height_mm <= 0:
        raise ValueError("Target size and real world dimensions must be positive")

    logger.info("Warping image to %dx%d region using refined corners.", width, height)

    def total(p):
        return p[0] + p[1]

    def diff(p):
        return p[1] - p[0]

    ordered = [min(points, key=total), min(points, key=diff), max(points, key=total), max(points, key=diff)]

    ppm_width = width / width_mm
    ppm_height = height / height_mm
    pixels_per_mm = (ppm_width + ppm_height) / 2.0
    logger.info(
        "Computed pixels per mm - Width: %s, Height: %s, Average: %s",
        ppm_width,
        ppm_height,
        pixels_per_mm,
    )

    destination = [(0.0, 0.0), (width - 1.0, 0.0), (width - 1.0, height - 1.0), (0.0, height - 1.0)]
    matrix = perspective_transform(ordered, destination)
    warped = warp_perspective(img, matrix, (width, height))
    logger.info("Perspective correction completed")
    return warped, pixels_per_mm


def warp_square(image, approx, side, size_mm):
    """Warp the quadrilateral onto a square of ``side`` pixels covering ``size_mm``."""
    return warp_image(image, _float_points(approx), (side, side), size_mm, size_mm)


def _gaussian_sigma(ksize: int) -> float:
    return 0.3 * ((ksize - 1) * 0.5 - 1) + 0.8


def remove_noise(binary, kernel_size, blur_size, threshold_value) -> np.ndarray:
    """Invert, clean with morphology, grow, blur and re-threshold a binary image."""
    logger.info("Removing noise using morphological operations.")
    inverted = np.where(_binary(binary) != 0, 0, 255).astype(np.uint8)
    kernel = structuring_element(KernelShape.ELLIPSE, kernel_size)
    closed = morph_close(morph_open(inverted, kernel), kernel)
    grown = dilate(closed, kernel, iterations=4)
    blurred = gaussian_blur(grown, _gaussian_sigma(blur_size), blur_size)
    return _binary(threshold(blurred, threshold_value, 255))


def find_main_contour(binary):
    """The external contour enclosing the largest area; RuntimeError when there is none."""
    logger.info("Finding the main (largest) contour in the cleaned image.")
    contours = find_contours(np.asarray(binary), RetrievalMode.EXTERNAL)
    if not contours:
        logger.error("No contours found for the object.")
        raise RuntimeError("No contours found for the object.")
    return max(contours, key=contour_area)


def _corners_from_extremes(contour):
    min_x = min(contour, key=lambda p: p[0])[0]
    max_x = max(contour, key=lambda p: p[0])[0]
    min_y = min(contour, key=lambda p: p[1])[1]
    max_y = max(contour, key=lambda p: p[1])[1]
    r = CORNER_SEARCH_RADIUS

    def near(x_ref, y_ref, p):
        return abs(p[0] - x_ref) < r and abs(p[1] - y_ref) < r

    candidates = [
        p
        for p in contour
        if near(min_x, min_y, p) or near(max_x, min_y, p) or near(max_x, max_y, p) or near(min_x, max_y, p)
    ]
    if len(candidates) >= 4:
        cx = int(sum(p[0] for p in candidates) / len(candidates))
        cy = int(sum(p[1] for p in candidates) / len(candidates))
        candidates.sort(key=lambda p: math.atan2(p[1] - cy, p[0] - cx))
        logger.info("Found %d corner candidates, using first 4", len(candidates))
        return candidates[:4]

    logger.info("Finding largest inscribed rectangle within paper boundary")
    xs = sorted(p[0] for p in contour)
    ys = sorted(p[1] for p in contour)
    x1, x2 = xs[int(len(xs) * 0.1)], xs[int(len(xs) * 0.9)]
    y1, y2 = ys[int(len(ys) * 0.1)], ys[int(len(ys) * 0.9)]
    logger.info("Using inscribed rectangle from (%s,%s) to (%s,%s)", x1, y1, x2, y2)
    return [(x1, y1), (x2, y1), (x2, y2), (x1, y2)]


def _boundary_corners(boundary):
    epsilon_factor = 0.02
    for attempt in range(10):
        corners = approximate_polygon(boundary, epsilon_factor)
        if len(corners) == 4:
            logger.info("Found 4 corners with epsilon factor: %s", epsilon_factor)
            return corners
        epsilon_factor += 0.005
        logger.info(
            "Attempt %d: Found %d corners, trying epsilon: %s", attempt + 1, len(corners), epsilon_factor
        )

    logger.warning("Could not find exactly 4 corners, trying fallback methods")
    corners = approximate_polygon(convex_hull(boundary), 0.02)
    if len(corners) == 4:
        logger.info("Convex hull fallback successful")
        return corners
    logger.info("Finding corners from contour extremes")
    return _corners_from_extremes(boundary)


def process_image_to_stage(input_path, params, target_stage=Stage.FINAL):
    """Run the pipeline up to ``target_stage``.

    Returns the image at that stage and the contour found so far (empty before the
    object is detected; the four lightbox corners at BOUNDARY_DETECTED).
    """
    stage = int(target_stage)
    logger.info("Processing image to stage %d", stage)

    original = load_image(input_path)
    gray = to_grayscale(original)
    push_debug_image(original, "original", params)
    push_debug_image(gray, "grayscale", params)
    if stage == Stage.LOADED:
        return gray.copy(), []

    normalized = normalize_lighting(gray, params)
    push_debug_image(normalized, "normalized", params)
    boundary_edges = detect_edges(normalized, original, params)
    push_debug_image(boundary_edges, "boundary_edges", params)
    boundary = find_boundary_contour(boundary_edges, params)

    corners = _boundary_corners(boundary)
    refined = refine_corners(corners, normalized, params)

    logger.info(
        "Warping from %dx%d px to %dx%d px (%smm x %smm)",
        gray.shape[1],
        gray.shape[0],
        params.lightbox_width_px,
        params.lightbox_height_px,
        params.lightbox_width_mm,
        params.lightbox_height_mm,
    )
    warped, pixels_per_mm = warp_image(
        gray,
        refined,
        (params.lightbox_width_px, params.lightbox_height_px),
        params.lightbox_width_mm,
        params.lightbox_height_mm,
    )
    push_debug_image(warped, "perspective_corrected", params)
    if stage == Stage.LIGHTBOX_CROPPED:
        return warped.copy(), []

    warped_normalized = normalize_lighting(warped, params)
    push_debug_image(warped_normalized, "warped_normalized", params)
    if stage == Stage.NORMALIZED:
        return warped_normalized.copy(), []

    if stage == Stage.BOUNDARY_DETECTED:
        return warped.copy(), [(int(x), int(y)) for x, y in refined]

    contour = find_object_contour(warped, params)
    push_debug_contour(warped, contour, "object_contour", params)
    if stage == Stage.OBJECT_DETECTED:
        return warped.copy(), contour

    if params.enable_smoothing:
        contour = smooth_contour(contour, params.smoothing_amount_mm, pixels_per_mm, params)
        push_debug_contour(warped, contour, "smoothed_contour", params)
    if stage == Stage.SMOOTHED:
        return warped.copy(), contour

    if params.dilation_amount_mm > 0.0:
        contour = dilate_contour(contour, params.dilation_amount_mm, pixels_per_mm, params)
        push_debug_contour(warped, contour, "dilated_contour", params)
    if stage == Stage.DILATED:
        return warped.copy(), contour

    if not validate_contour(contour, params):
        raise RuntimeError("Final contour validation failed")
    push_debug_contour(warped, contour, "final_contour", params)
    flush_debug_stack(params)
    return warped.copy(), contour


def process_image_to_contour(input_path, params=None):
    """Run the whole pipeline and return the final outline in warped-image pixels."""
    if params is None:
        params = ProcessingParams()
    logger.info("Starting CAD-optimized image processing pipeline...")
    _, contour = process_image_to_stage(input_path, params, Stage.FINAL)
    logger.info("Image processing pipeline completed; final contour has %d points", len(contour))
    flush_debug_stack(params)
    return contour