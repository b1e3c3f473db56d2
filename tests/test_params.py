import dataclasses

import pytest

from printtrace.params import ProcessingParams, SmoothingMode


def test_debug_stacks_are_not_shared():
    a = ProcessingParams()
    b = ProcessingParams()
    a.debug_image_stack.append(("img", "name"))
    assert b.debug_image_stack == []
    assert len(a.debug_image_stack) == 1


def test_smoothing_mode_integer_is_coerced():
    params = ProcessingParams(smoothing_mode=0)
    assert params.smoothing_mode is SmoothingMode.MORPHOLOGICAL


def test_unknown_smoothing_mode_rejected():
    with pytest.raises(ValueError):
        ProcessingParams(smoothing_mode=7)


@pytest.mark.parametrize(
    "field_name",
    [
        "lightbox_width_px",
        "lightbox_height_px",
        "lightbox_width_mm",
        "lightbox_height_mm",
        "clahe_tile_size",
        "large_kernel",
        "morph_kernel_size",
    ],
)
def test_non_positive_sizes_rejected(field_name):
    with pytest.raises(ValueError, match=field_name):
        ProcessingParams(**{field_name: 0})


def test_replace_revalidates():
    params = ProcessingParams()
    with pytest.raises(ValueError):
        dataclasses.replace(params, lightbox_height_mm=-1.0)


def test_explicit_values_are_kept():
    params = ProcessingParams(lightbox_width_px=640, dilation_amount_mm=1.5)
    assert params.lightbox_width_px == 640
    assert params.dilation_amount_mm == 1.5