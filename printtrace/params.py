"""Tunable settings for the tracing pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any


class SmoothingMode(IntEnum):
    """How contours are smoothed before export."""

    MORPHOLOGICAL = 0
    CURVATURE = 1


@dataclass
class ProcessingParams:
    """All parameters controlling lightbox detection, object tracing and output."""

    # Lightbox geometry
    lightbox_width_px: int = 1000
    lightbox_height_px: int = 1000
    lightbox_width_mm: float = 200.0
    lightbox_height_mm: float = 200.0

    # Lighting normalisation
    clahe_clip_limit: float = 2.0
    clahe_tile_size: int = 8

    # LAB paper mask (8-bit LAB, A/B centred on 128)
    lab_l_thresh: int = 200
    lab_a_min: int = 118
    lab_a_max: int = 138
    lab_b_min: int = 118
    lab_b_max: int = 138
    otsu_offset: float = 0.0
    large_kernel: int = 15
    hole_area_ratio: float = 0.001

    # Corner detection
    min_solidity: float = 0.8
    max_aspect_ratio: float = 3.0
    canny_lower: float = 50.0
    canny_upper: float = 150.0
    canny_aperture: int = 3
    enable_sub_pixel_refinement: bool = True
    corner_win_size: int = 5
    corner_zero_zone: int = -1

    # Object detection
    use_adaptive_threshold: bool = False
    manual_threshold: float = 0.0
    threshold_offset: float = 0.0
    disable_morphology: bool = False
    morph_kernel_size: int = 5
    merge_nearby_contours: bool = False
    min_contour_area: float = 1000.0
    polygon_epsilon_factor: float = 0.0005
    force_convex: bool = False

    # Contour post-processing
    enable_smoothing: bool = True
    smoothing_mode: SmoothingMode = SmoothingMode.CURVATURE
    smoothing_amount_mm: float = 0.5
    dilation_amount_mm: float = 0.0
    min_perimeter: float = 100.0
    validate_closed_contour: bool = True

    # Diagnostics
    verbose_output: bool = False
    enable_debug_output: bool = False
    debug_output_path: str = "./debug/"
    debug_image_stack: list[tuple[Any, str]] = field(default_factory=list, repr=False)

    def __post_init__(self) -> None:
        self.smoothing_mode = SmoothingMode(self.smoothing_mode)
        positive = {
            "lightbox_width_px": self.lightbox_width_px,
            "lightbox_height_px": self.lightbox_height_px,
            "lightbox_width_mm": self.lightbox_width_mm,
            "lightbox_height_mm": self.lightbox_height_mm,
            "clahe_tile_size": self.clahe_tile_size,
            "large_kernel": self.large_kernel,
            "morph_kernel_size": self.morph_kernel_size,
        }
        for name, value in positive.items():
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")