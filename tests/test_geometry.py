import math

import numpy as np
import pytest

from printtrace.geometry import (
    Rect,
    approx_poly_dp,
    arc_length,
    bounding_rect,
    contour_area,
    convex_hull,
    min_area_rect,
    order_corners,
)


def _square_outline(side, step):
    pts = []
    pts += [(x, 0) for x in range(0, side, step)]
    pts += [(side, y) for y in range(0, side, step)]
    pts += [(x, side) for x in range(side, 0, -step)]
    pts += [(0, y) for y in range(side, 0, -step)]
    return pts


def test_contour_area_of_rectangle_is_width_times_height():
    w, h = 12, 7
    pts = [(0, 0), (w, 0), (w, h), (0, h)]
    assert contour_area(pts) == pytest.approx(w * h)


def test_contour_area_independent_of_orientation():
    pts = [(1, 2), (9, 3), (7, 11), (2, 8)]
    assert contour_area(pts) == pytest.approx(contour_area(pts[::-1]))


def test_triangle_is_half_of_parallelogram():
    a, b, c = (0, 0), (6, 1), (2, 5)
    d = (b[0] + c[0], b[1] + c[1])
    assert contour_area([a, b, c]) * 2 == pytest.approx(contour_area([a, b, d, c]))


def test_contour_area_degenerate_is_zero():
    assert contour_area([(1, 1), (5, 5)]) == 0.0


def test_arc_length_closed_adds_closing_segment():
    pts = [(0, 0), (3, 0), (3, 4)]
    diff = arc_length(pts, True) - arc_length(pts, False)
    assert diff == pytest.approx(math.dist(pts[-1], pts[0]))


def test_arc_length_of_square_outline():
    side = 20
    pts = [(0, 0), (side, 0), (side, side), (0, side)]
    assert arc_length(pts, True) == pytest.approx(4 * side)


def test_bounding_rect_is_inclusive():
    assert bounding_rect([(2, 3), (5, 7), (4, 4)]) == Rect(2, 3, 4, 5)


def test_bounding_rect_contains_float_points():
    pts = [(0.5, 0.25), (2.75, 1.5), (1.1, 3.9)]
    r = bounding_rect(pts)
    for x, y in pts:
        assert r.x <= x < r.x + r.width
        assert r.y <= y < r.y + r.height


def test_approx_poly_dp_recovers_square_corners():
    side = 40
    pts = _square_outline(side, 2)
    approx = approx_poly_dp(pts, 1.0, True)
    assert sorted(approx) == sorted([(0, 0), (side, 0), (side, side), (0, side)])


def test_approx_poly_dp_open_collinear_keeps_endpoints():
    pts = [(i, 2 * i) for i in range(10)]
    assert approx_poly_dp(pts, 0.5, False) == [pts[0], pts[-1]]


def test_approx_poly_dp_result_is_ordered_subset():
    pts = [(int(50 + 30 * math.cos(t)), int(50 + 20 * math.sin(t))) for t in np.linspace(0, 6.2, 60)]
    approx = approx_poly_dp(pts, 3.0, True)
    assert set(approx) <= set(pts)
    assert 3 <= len(approx) < len(pts)


def test_convex_hull_drops_interior_points():
    corners = [(0, 0), (10, 0), (10, 10), (0, 10)]
    interior = [(5, 5), (2, 7), (8, 1), (5, 0)]
    hull = convex_hull(corners + interior)
    assert sorted(hull) == sorted(corners)


def test_convex_hull_is_convex_and_counter_clockwise():
    rng = np.random.default_rng(3)
    pts = [tuple(p) for p in rng.integers(0, 100, size=(40, 2)).tolist()]
    hull = convex_hull(pts)
    n = len(hull)
    for i in range(n):
        o, a, b = hull[i], hull[(i + 1) % n], hull[(i + 2) % n]
        assert (a[0] - o[0]) * (b[1] - o[1]) - (a[1] - o[1]) * (b[0] - o[0]) > 0


def test_min_area_rect_axis_aligned():
    corners = [(1.0, 2.0), (9.0, 2.0), (9.0, 6.0), (1.0, 6.0)]
    box = min_area_rect(corners + [(4.0, 3.0)])
    assert sorted(box) == pytest.approx(sorted(corners))


def test_min_area_rect_of_rotated_rectangle_matches_its_area():
    angle = math.radians(30)
    c, s = math.cos(angle), math.sin(angle)
    base = [(0, 0), (20, 0), (20, 8), (0, 8)]
    rotated = [(x * c - y * s, x * s + y * c) for x, y in base]
    box = min_area_rect(rotated)
    assert contour_area(box) == pytest.approx(contour_area(rotated))


def test_min_area_rect_empty_raises():
    with pytest.raises(ValueError):
        min_area_rect([])


def test_order_corners_sorts_shuffled_points():
    tl, tr, br, bl = (10, 12), (90, 8), (95, 80), (5, 85)
    assert order_corners([br, tl, bl, tr]) == [tl, tr, br, bl]


def test_order_corners_wrong_count_returns_input():
    pts = [(0, 0), (1, 1), (2, 0)]
    assert order_corners(pts) == pts