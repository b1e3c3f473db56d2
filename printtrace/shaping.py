"""Finding the traced object in the corrected image and shaping its outline for printing."""

from __future__ import annotations

import logging
import math

import numpy as np

from .contours import (
    RetrievalMode,
    connected_components,
    draw_polyline,
    fill_poly,
    find_contours,
    largest_contour,
)
from .debug import push_debug_image, save_debug_image
from .geometry import approx_poly_dp, arc_length, bounding_rect, contour_area, convex_hull
from .imaging import (
    KernelShape,
    adaptive_threshold,
    canny,
    clahe,
    dilate,
    median_blur,
    morph_close,
    morph_open,
    otsu_threshold,
    structuring_element,
    threshold,
    to_grayscale,
)
from .params import SmoothingMode
from .transform import corner_sub_pix

logger = logging.getLogger(__name__)


def _int_points(points) -> list[tuple[int, int]]:
    return [(int(x), int(y)) for x, y in points]


def _binarise(gray: np.ndarray, params) -> np.ndarray:
    if params.use_adaptive_threshold:
        logger.debug("Using adaptive threshold")
        return adaptive_threshold(gray, 255, 21, 10, inverse=True)
    if params.manual_threshold > 0.0:
        logger.debug("Using manual threshold: %s", params.manual_threshold)
        return threshold(gray, params.manual_threshold, 255, inverse=True)
    logger.debug("Using Otsu threshold")
    otsu = otsu_threshold(gray)
    binary = threshold(gray, otsu, 255, inverse=True)
    if params.threshold_offset != 0.0:
        binary = threshold(gray, otsu + params.threshold_offset, 255, inverse=True)
        logger.debug("Applied offset: %s", params.threshold_offset)
    return binary


def _select_component(binary: np.ndarray, params) -> np.ndarray:
    components = connected_components(binary)
    if components.count < 2:
        raise RuntimeError("No object components found")

    rows, cols = binary.shape
    if params.merge_nearby_contours:
        valid = [
            label
            for label in range(1, components.count)
            if components.areas[label] >= params.min_contour_area
        ]
        if not valid:
            raise RuntimeError("No valid object components found")
        logger.debug("Using %d components for merging", len(valid))
        return np.where(np.isin(components.labels, valid), 255, 0).astype(np.uint8)

    centre_x, centre_y = float(cols // 2), float(rows // 2)
    best_label = -1
    best_score = 0.0
    for label in range(1, components.count):
        area = float(components.areas[label])
        if area < params.min_contour_area:
            continue
        cx, cy = components.centroids[label]
        distance = math.hypot(cx - centre_x, cy - centre_y) / min(cols, rows)
        score = area / (1.0 + distance)
        if score > best_score:
            best_score = score
            best_label = label
    if best_label < 0:
        raise RuntimeError("No valid object component found")
    return components.mask(best_label)


def find_object_contour(warped, params) -> list[tuple[int, int]]:
    """Outline of the object lying on the corrected lightbox image.

    Raises RuntimeError when no object of at least ``min_contour_area`` pixels is found.
    """
    logger.debug("Finding object contour with streamlined detection")
    image = np.asarray(warped)
    gray = to_grayscale(image) if image.ndim == 3 and image.shape[2] == 3 else image.copy()
    gray = median_blur(gray, 5)
    gray = clahe(gray, 2.0, 8)
    push_debug_image(gray, "object_preprocessed", params)

    binary = _binarise(gray, params).astype(np.uint8)
    push_debug_image(binary, "object_thresholded", params)

    if not params.disable_morphology:
        kernel = structuring_element(KernelShape.ELLIPSE, params.morph_kernel_size)
        binary = morph_close(morph_close(binary, kernel), kernel)
        regions = find_contours(binary, RetrievalMode.CCOMP)
        filled = fill_poly(binary, regions, 255)
        binary = morph_open(filled, kernel)
        push_debug_image(binary, "object_morphology", params)

    component_mask = _select_component(binary, params)
    push_debug_image(component_mask, "object_component", params)

    edges = canny(component_mask, 50, 150, 3)
    push_debug_image(edges, "object_edges", params)
    contours = find_contours(edges, RetrievalMode.EXTERNAL, simple=False)
    if not contours:
        raise RuntimeError("No edge contours found")

    boundary = max(contours, key=contour_area)
    epsilon = min(0.0005, params.polygon_epsilon_factor) * arc_length(boundary, True)
    outline = approx_poly_dp(boundary, epsilon, True)
    logger.debug("Edge-based contour: %d -> %d points", len(boundary), len(outline))

    if params.force_convex:
        logger.debug("Applying convex hull")
        outline = convex_hull(outline)
    logger.debug("Object contour smoothed and simplified: %d points", len(outline))
    return _int_points(outline)


def refine_contour(contour, gray, params) -> list[tuple[float, float]]:
    """Contour points as floats, moved to sub-pixel corner positions when refinement is enabled."""
    points = [(float(x), float(y)) for x, y in contour]
    if not params.enable_sub_pixel_refinement:
        return points
    logger.info("Refining contour with sub-pixel accuracy")
    return corner_sub_pix(
        gray, points, params.corner_win_size, params.corner_zero_zone, 30, 0.1
    )


def _rasterise(contour, padding: int):
    rect = bounding_rect(contour)
    offset_x = padding - rect.x
    offset_y = padding - rect.y
    mask = np.zeros((rect.height + 2 * padding, rect.width + 2 * padding), dtype=np.uint8)
    shifted = [(int(x) + offset_x, int(y) + offset_y) for x, y in contour]
    return fill_poly(mask, [shifted], 255), (offset_x, offset_y)


def _outline(mask: np.ndarray, offset, original, what: str):
    contours = find_contours(mask, RetrievalMode.EXTERNAL)
    if not contours:
        logger.warning("No contours found after %s, returning original", what)
        return original
    best = largest_contour(contours)
    if best is None:
        logger.warning("No valid contour found after %s, returning original", what)
        return original
    offset_x, offset_y = offset
    return [(x - offset_x, y - offset_y) for x, y in best]


def _kernel_for(pixels: float) -> np.ndarray:
    size = max(int(pixels * 2 + 1), 3)
    return structuring_element(KernelShape.ELLIPSE, size)


def dilate_contour(contour, dilation_mm, pixels_per_mm, params):
    """Grow the outline outwards by ``dilation_mm`` to leave printing clearance."""
    if dilation_mm <= 0.0:
        logger.info("No dilation requested, returning original contour")
        return contour
    pixels = dilation_mm * pixels_per_mm
    logger.info("Dilating contour by %smm (%s px)", dilation_mm, pixels)

    mask, offset = _rasterise(contour, int(pixels * 3))
    save_debug_image(mask, "contour_mask.jpg", params)
    dilated = dilate(mask, _kernel_for(pixels))
    save_debug_image(dilated, "dilated_mask.jpg", params)

    result = _outline(dilated, offset, contour, "dilation")
    logger.info("Dilation complete. Original: %d points, Dilated: %d points", len(contour), len(result))
    return result


def smooth_contour(contour, smoothing_mm, pixels_per_mm, params):
    """Smooth the outline with the method chosen in ``params.smoothing_mode``."""
    if smoothing_mm <= 0.0 or not params.enable_smoothing:
        logger.info("No smoothing requested, returning original contour")
        return contour
    if SmoothingMode(params.smoothing_mode) is SmoothingMode.MORPHOLOGICAL:
        return smooth_contour_morphological(contour, smoothing_mm, pixels_per_mm, params)
    return smooth_contour_curvature(contour, smoothing_mm, pixels_per_mm, params)


def smooth_contour_curvature(contour, smoothing_mm, pixels_per_mm, params) -> list[tuple[int, int]]:
    """Simplify, then pull sharp corners towards a weighted average of their neighbours."""
    pixels = smoothing_mm * pixels_per_mm
    logger.info("Curvature-based smoothing by %s px", pixels)

    simplified = approx_poly_dp(contour, pixels * 0.5, True)
    count = len(simplified)
    window = max(int(pixels) | 1, 3)
    half = window // 2

    smoothed = []
    for i, current in enumerate(simplified):
        prev = simplified[(i - 1) % count]
        nxt = simplified[(i + 1) % count]
        v1 = (prev[0] - current[0], prev[1] - current[1])
        v2 = (nxt[0] - current[0], nxt[1] - current[1])
        cosine = (v1[0] * v2[0] + v1[1] * v2[1]) / (math.hypot(*v1) * math.hypot(*v2) + 1e-6)
        angle = math.acos(max(-1.0, min(1.0, cosine)))

        if angle < math.pi * 5.0 / 6.0:
            total = 0.0
            avg_x = avg_y = 0.0
            for j in range(-half, half + 1):
                px, py = simplified[(i + j) % count]
                weight = 1.0 / (1.0 + abs(j))
                avg_x += px * weight
                avg_y += py * weight
                total += weight
            avg_x /= total
            avg_y /= total
            blend = ((math.pi - angle) / math.pi) ** 2
            smoothed.append(
                (
                    int(current[0] * (1 - blend) + avg_x * blend),
                    int(current[1] * (1 - blend) + avg_y * blend),
                )
            )
        else:
            smoothed.append((int(current[0]), int(current[1])))

    final = _int_points(approx_poly_dp(smoothed, pixels * 0.2, True))

    if params.enable_debug_output and len(contour):
        rect = bounding_rect(contour)
        padding = 20
        dx, dy = padding - rect.x, padding - rect.y
        vis = np.zeros((rect.height + 2 * padding, rect.width + 2 * padding, 3), dtype=np.uint8)
        vis = draw_polyline(vis, [(x + dx, y + dy) for x, y in contour], True, (0, 0, 255), 2)
        if final:
            vis = draw_polyline(vis, [(x + dx, y + dy) for x, y in final], True, (0, 255, 0), 2)
        save_debug_image(vis, "smoothing_comparison.jpg", params)

    logger.info(
        "Curvature-based smoothing complete. Original: %d points, Smoothed: %d points",
        len(contour),
        len(final),
    )
    return final


def smooth_contour_morphological(contour, smoothing_mm, pixels_per_mm, params):
    """Smooth the outline by closing then opening its filled mask."""
    pixels = smoothing_mm * pixels_per_mm
    logger.info("Morphological smoothing by %s px", pixels)

    mask, offset = _rasterise(contour, int(pixels * 3))
    save_debug_image(mask, "morph_smooth_mask.jpg", params)
    kernel = _kernel_for(pixels)
    smoothed = morph_open(morph_close(mask, kernel), kernel)
    save_debug_image(smoothed, "morph_smoothed_mask.jpg", params)

    result = _outline(smoothed, offset, contour, "morphological smoothing")
    logger.info(
        "Morphological smoothing complete. Original: %d points, Smoothed: %d points",
        len(contour),
        len(result),
    )
    return result


def validate_contour(contour, params) -> bool:
    """Whether the outline has enough points and perimeter to be worth exporting."""
    logger.info("Validating contour for CAD suitability")
    points = list(contour)
    if len(points) < 3:
        logger.error("Contour has too few points: %d", len(points))
        return False
    perimeter = arc_length(points, True)
    if perimeter < params.min_perimeter:
        logger.error("Contour perimeter too small: %s < %s", perimeter, params.min_perimeter)
        return False
    if params.validate_closed_contour:
        first, last = points[0], points[-1]
        gap = math.hypot(first[0] - last[0], first[1] - last[1])
        if gap > 5.0:
            logger.warning("Contour may not be properly closed, gap: %s pixels", gap)
    logger.info("Contour validation passed")
    return True


def merge_nearby_contours(contours, merge_distance_px, params):
    """Join contours lying within ``merge_distance_px`` of each other into one outline."""
    if not contours:
        return []
    logger.info("Merging %d contours with max distance: %spx", len(contours), merge_distance_px)
    valid = [c for c in contours if contour_area(c) >= params.min_contour_area * 0.1]
    if not valid:
        return []
    if len(valid) == 1:
        return valid[0]

    mask = np.zeros((params.lightbox_height_px, params.lightbox_width_px), dtype=np.uint8)
    mask = fill_poly(mask, valid, 255)
    if merge_distance_px > 0:
        size = int(merge_distance_px * 2)
        if size > 0 and size % 2 == 0:
            size += 1
        size = min(max(size, 3), 21)
        mask = morph_close(mask, structuring_element(KernelShape.ELLIPSE, size))
        logger.info("Applied morphological closing with kernel size: %d", size)
    save_debug_image(mask, "merged_mask.jpg", params)

    merged = find_contours(mask, RetrievalMode.EXTERNAL)
    if not merged:
        logger.warning("No contours found after merging")
        return []
    best = largest_contour(merged)
    if best is None:
        return []
    logger.info("Merged contour has area: %s", contour_area(best))
    return best