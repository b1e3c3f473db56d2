import numpy as np
import pytest

from printtrace.contours import (
    RetrievalMode,
    connected_components,
    draw_polyline,
    fill_poly,
    find_contours,
    largest_contour,
)
from printtrace.geometry import Rect, bounding_rect


def _rect_mask():
    mask = np.zeros((12, 14), dtype=np.uint8)
    mask[2:8, 3:10] = 255
    return mask


def _ring_mask():
    mask = np.zeros((12, 12), dtype=np.uint8)
    mask[1:11, 1:11] = 255
    mask[4:8, 4:8] = 0
    return mask


def test_rectangle_simple_contour_is_its_corners():
    contours = find_contours(_rect_mask(), RetrievalMode.EXTERNAL, True)
    assert len(contours) == 1
    assert set(contours[0]) == {(3, 2), (9, 2), (9, 7), (3, 7)}
    assert len(contours[0]) == 4


def test_rectangle_bounding_rect_matches_mask():
    contour = find_contours(_rect_mask(), RetrievalMode.EXTERNAL, True)[0]
    assert bounding_rect(contour) == Rect(3, 2, 7, 6)


def test_full_contour_covers_border_pixels():
    mask = _rect_mask()
    contour = find_contours(mask, RetrievalMode.EXTERNAL, False)[0]
    rect = mask != 0
    interior = np.zeros_like(rect)
    interior[3:7, 4:9] = True
    border = rect & ~interior
    expected = {(int(x), int(y)) for y, x in zip(*np.nonzero(border))}
    assert set(contour) == expected
    assert len(contour) == len(expected)


def test_ring_external_versus_list():
    mask = _ring_mask()
    assert len(find_contours(mask, RetrievalMode.EXTERNAL, True)) == 1
    assert len(find_contours(mask, RetrievalMode.LIST, True)) == 2
    assert len(find_contours(mask, RetrievalMode.CCOMP, True)) == 2


def test_nested_blob_is_hidden_in_external_mode():
    mask = _ring_mask()
    mask[5:7, 5:7] = 255
    assert len(find_contours(mask, RetrievalMode.EXTERNAL, True)) == 1
    assert len(find_contours(mask, RetrievalMode.LIST, True)) == 3


def test_single_pixel_contour():
    mask = np.zeros((8, 8), dtype=np.uint8)
    mask[3, 4] = 255
    assert find_contours(mask, RetrievalMode.EXTERNAL, True) == [[(4, 3)]]


def test_thin_line_reduces_to_end_points():
    mask = np.zeros((10, 12), dtype=np.uint8)
    mask[5, 2:9] = 255
    contours = find_contours(mask, RetrievalMode.EXTERNAL, True)
    assert len(contours) == 1
    assert set(contours[0]) == {(2, 5), (8, 5)}


def test_contours_in_raster_order():
    mask = np.zeros((20, 20), dtype=np.uint8)
    mask[12:16, 1:5] = 255
    mask[2:5, 14:18] = 255
    contours = find_contours(mask, RetrievalMode.EXTERNAL, True)
    assert len(contours) == 2
    assert min(y for _, y in contours[0]) < min(y for _, y in contours[1])


def test_invalid_mode_rejected():
    with pytest.raises(ValueError):
        find_contours(_rect_mask(), "bogus", True)


def test_three_dimensional_mask_rejected():
    with pytest.raises(ValueError):
        find_contours(np.zeros((4, 4, 3), dtype=np.uint8), RetrievalMode.EXTERNAL, True)


@pytest.mark.parametrize("shape", ["rect", "ell"])
def test_fill_poly_round_trip(shape):
    mask = np.zeros((14, 14), dtype=np.uint8)
    if shape == "rect":
        mask[3:9, 2:11] = 255
    else:
        mask[2:10, 2:5] = 255
        mask[7:10, 2:12] = 255
    contours = find_contours(mask, RetrievalMode.EXTERNAL, True)
    filled = fill_poly(np.zeros_like(mask), contours, 255)
    assert np.array_equal(filled, mask)


def test_fill_poly_with_hole_contours_fills_holes():
    mask = _ring_mask()
    contours = find_contours(mask, RetrievalMode.LIST, True)
    filled = fill_poly(mask, contours, 255)
    expected = np.zeros_like(mask)
    expected[1:11, 1:11] = 255
    assert np.array_equal(filled, expected)


def test_fill_poly_leaves_input_untouched():
    image = np.zeros((10, 10), dtype=np.uint8)
    fill_poly(image, [[(1, 1), (8, 1), (8, 8), (1, 8)]], 255)
    assert not image.any()


def test_draw_closed_polyline():
    square = [(2, 2), (8, 2), (8, 8), (2, 8)]
    out = draw_polyline(np.zeros((11, 11), dtype=np.uint8), square, True, 255, 1)
    assert (out[2, 2:9] == 255).all()
    assert (out[2:9, 8] == 255).all()
    assert (out[2:9, 2] == 255).all()
    assert out[5, 5] == 0


def test_draw_open_polyline_skips_closing_segment():
    square = [(2, 2), (8, 2), (8, 8), (2, 8)]
    out = draw_polyline(np.zeros((11, 11), dtype=np.uint8), square, False, 255, 1)
    assert (out[8, 2:9] == 255).all()
    assert out[5, 2] == 0


def test_draw_polyline_rejects_zero_thickness():
    with pytest.raises(ValueError):
        draw_polyline(np.zeros((5, 5), dtype=np.uint8), [(0, 0), (4, 4)], False, 255, 0)


def test_connected_components_measures_blobs():
    mask = np.zeros((10, 12), dtype=np.uint8)
    mask[1:4, 1:4] = 1
    mask[6:8, 6:10] = 1
    comps = connected_components(mask)
    assert comps.count == 3
    assert comps.areas.sum() == mask.size
    assert sorted(comps.areas[1:].tolist()) == sorted([mask[1:4, 1:4].size, mask[6:8, 6:10].size])
    assert np.allclose(comps.centroids[1], [2.0, 2.0])
    assert np.count_nonzero(comps.mask(1)) == mask[1:4, 1:4].size


def test_connected_components_diagonal_touch_is_one_region():
    mask = np.zeros((6, 6), dtype=np.uint8)
    mask[1, 1] = 1
    mask[2, 2] = 1
    assert connected_components(mask).count == 2


def test_largest_contour_picks_greatest_area():
    small = [(0, 0), (2, 0), (2, 2), (0, 2)]
    big = [(0, 0), (5, 0), (5, 5), (0, 5)]
    assert largest_contour([small, big]) == big


def test_largest_contour_without_area_is_none():
    assert largest_contour([]) is None
    assert largest_contour([[(0, 0), (1, 1)]]) is None