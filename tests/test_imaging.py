import numpy as np
import pytest

from printtrace.imaging import (
    KernelShape,
    adaptive_threshold,
    bgr_to_lab,
    canny,
    clahe,
    dilate,
    erode,
    gaussian_blur,
    gray_to_bgr,
    in_range,
    median_blur,
    morph_close,
    morph_open,
    otsu_threshold,
    sobel,
    structuring_element,
    threshold,
    to_grayscale,
)


def _square_image(size=40, lo=0, hi=255, start=10, stop=30):
    img = np.full((size, size), lo, dtype=np.uint8)
    img[start:stop, start:stop] = hi
    return img


def test_grayscale_of_neutral_colour_keeps_value():
    img = np.full((4, 5, 3), 137, dtype=np.uint8)
    gray = to_grayscale(img)
    assert gray.shape == (4, 5)
    assert np.all(gray == 137)


def test_grayscale_weights_red_above_blue():
    img = np.zeros((1, 2, 3), dtype=np.uint8)
    img[0, 0] = (255, 0, 0)  # blue
    img[0, 1] = (0, 0, 255)  # red
    gray = to_grayscale(img)
    assert gray[0, 1] > gray[0, 0]


def test_grayscale_rejects_bad_shape():
    with pytest.raises(ValueError):
        to_grayscale(np.zeros((3, 3, 2), dtype=np.uint8))


def test_gray_to_bgr_round_trip():
    gray = np.arange(12, dtype=np.uint8).reshape(3, 4)
    bgr = gray_to_bgr(gray)
    assert bgr.shape == (3, 4, 3)
    assert np.array_equal(to_grayscale(bgr), gray)


def test_lab_white_and_black():
    img = np.zeros((1, 2, 3), dtype=np.uint8)
    img[0, 0] = 255
    lab = bgr_to_lab(img)
    assert tuple(lab[0, 0]) == (255, 128, 128)
    assert tuple(lab[0, 1]) == (0, 128, 128)


def test_lab_gray_is_neutral_and_ordered():
    img = np.zeros((1, 3, 3), dtype=np.uint8)
    img[0, 0] = 60
    img[0, 1] = 120
    img[0, 2] = 200
    lab = bgr_to_lab(img).astype(int)
    assert np.all(np.abs(lab[0, :, 1:] - 128) <= 1)
    assert lab[0, 0, 0] < lab[0, 1, 0] < lab[0, 2, 0]


def test_clahe_uniform_image_stays_uniform():
    img = np.full((64, 64), 90, dtype=np.uint8)
    out = clahe(img, 2.0, 8)
    assert out.shape == img.shape
    assert len(np.unique(out)) == 1


def test_clahe_single_tile_is_monotone_equalisation():
    ramp = np.tile(np.arange(0, 256, 4, dtype=np.uint8), (16, 1))
    out = clahe(ramp, 0.0, 1)
    row = out[0].astype(int)
    assert np.all(np.diff(row) >= 0)
    assert row[-1] == 255


def test_clahe_handles_non_divisible_size():
    rng = np.random.default_rng(1)
    img = rng.integers(0, 256, size=(37, 53), dtype=np.uint8)
    out = clahe(img, 2.0, 8)
    assert out.shape == (37, 53)
    assert out.dtype == np.uint8


def test_clahe_rejects_colour_input():
    with pytest.raises(ValueError):
        clahe(np.zeros((8, 8, 3), dtype=np.uint8), 2.0, 8)


def test_threshold_binary_and_inverse():
    img = np.array([[10, 100, 101, 200]], dtype=np.uint8)
    binary = threshold(img, 100, 255)
    assert binary.tolist() == [[0, 0, 255, 255]]
    inverse = threshold(img, 100, 255, inverse=True)
    assert np.array_equal(inverse, 255 - binary)


def test_otsu_separates_two_levels():
    img = np.full((20, 20), 50, dtype=np.uint8)
    img[:, 10:] = 200
    t = otsu_threshold(img)
    assert 50 <= t < 200
    binary = threshold(img, t, 255)
    assert np.all(binary[:, :10] == 0)
    assert np.all(binary[:, 10:] == 255)


def test_in_range_is_inclusive():
    img = np.array([[117, 118, 128, 138, 139]], dtype=np.uint8)
    assert in_range(img, 118, 138).tolist() == [[0, 255, 255, 255, 0]]


def test_adaptive_threshold_uniform_image():
    img = np.full((30, 30), 120, dtype=np.uint8)
    normal = adaptive_threshold(img, 255, 21, 10)
    inverse = adaptive_threshold(img, 255, 21, 10, inverse=True)
    assert normal.shape == (30, 30)
    assert np.array_equal(normal, np.full((30, 30), 255, dtype=np.uint8))
    assert np.array_equal(inverse, np.zeros((30, 30), dtype=np.uint8))


def test_adaptive_threshold_marks_dark_spot():
    img = np.full((41, 41), 200, dtype=np.uint8)
    img[18:23, 18:23] = 20
    out = adaptive_threshold(img, 255, 21, 10)
    assert out[20, 20] == 0
    assert out[0, 0] == 255


def test_adaptive_threshold_rejects_even_block():
    with pytest.raises(ValueError):
        adaptive_threshold(np.zeros((10, 10), dtype=np.uint8), 255, 20, 5)


def test_gaussian_blur_constant_and_mass():
    flat = np.full((15, 15), 77, dtype=np.uint8)
    assert np.all(gaussian_blur(flat, 2.0) == 77)
    impulse = np.zeros((21, 21))
    impulse[10, 10] = 1.0
    blurred = gaussian_blur(impulse, 1.5)
    assert blurred.sum() == pytest.approx(1.0)
    assert blurred[10, 10] < 1.0
    assert blurred[10, 9] == pytest.approx(blurred[10, 11])
    assert blurred[9, 10] == pytest.approx(blurred[11, 10])


def test_gaussian_blur_needs_sigma_or_size():
    with pytest.raises(ValueError):
        gaussian_blur(np.zeros((5, 5)), 0.0)


def test_median_blur_removes_salt():
    img = np.zeros((9, 9), dtype=np.uint8)
    img[4, 4] = 255
    assert np.all(median_blur(img, 5) == 0)
    with pytest.raises(ValueError):
        median_blur(img, 4)


def test_structuring_elements():
    assert np.all(structuring_element(KernelShape.RECT, 3) == 1)
    cross = structuring_element(KernelShape.CROSS, 3)
    assert cross.tolist() == [[0, 1, 0], [1, 1, 1], [0, 1, 0]]
    ellipse = structuring_element(KernelShape.ELLIPSE, 5)
    assert ellipse.tolist() == [
        [0, 0, 1, 0, 0],
        [1, 1, 1, 1, 1],
        [1, 1, 1, 1, 1],
        [1, 1, 1, 1, 1],
        [0, 0, 1, 0, 0],
    ]


def test_structuring_element_width_height_order():
    kernel = structuring_element(KernelShape.RECT, (5, 3))
    assert kernel.shape == (3, 5)


def test_dilate_and_erode_are_inverse_on_block():
    img = np.zeros((9, 9), dtype=np.uint8)
    img[4, 4] = 255
    kernel = structuring_element(KernelShape.RECT, 3)
    grown = dilate(img, kernel)
    assert np.count_nonzero(grown) == 9
    assert np.all(grown[3:6, 3:6] == 255)
    assert np.array_equal(erode(grown, kernel), img)


def test_dilate_iterations_grow_further():
    img = np.zeros((11, 11), dtype=np.uint8)
    img[5, 5] = 255
    kernel = structuring_element(KernelShape.RECT, 3)
    assert np.array_equal(dilate(img, kernel, 2), dilate(dilate(img, kernel), kernel))


def test_open_removes_speck_and_close_fills_hole():
    kernel = structuring_element(KernelShape.RECT, 3)
    speck = np.zeros((15, 15), dtype=np.uint8)
    speck[7, 7] = 255
    opened = morph_open(speck, kernel)
    assert opened.shape == (15, 15)
    assert np.count_nonzero(opened) == 0
    holed = np.full((15, 15), 255, dtype=np.uint8)
    holed[7, 7] = 0
    closed = morph_close(holed, kernel)
    assert np.array_equal(closed, np.full((15, 15), 255, dtype=np.uint8))


def test_close_keeps_solid_square():
    img = _square_image()
    kernel = structuring_element(KernelShape.ELLIPSE, 5)
    assert np.array_equal(morph_close(img, kernel), img)
    assert np.array_equal(morph_open(img, kernel)[12:28, 12:28], img[12:28, 12:28])


def test_sobel_on_horizontal_ramp():
    ramp = np.tile(np.arange(10, dtype=np.float32), (6, 1))
    gx = sobel(ramp, 1, 0)
    gy = sobel(ramp, 0, 1)
    assert gx.dtype == np.float32
    assert np.allclose(gx[:, 1:-1], 8.0)
    assert np.allclose(gy, 0.0)


def test_sobel_rejects_zero_order():
    with pytest.raises(ValueError):
        sobel(np.zeros((5, 5)), 0, 0)


def test_canny_uniform_has_no_edges():
    img = np.full((30, 30), 128, dtype=np.uint8)
    assert np.count_nonzero(canny(img, 50, 150)) == 0


def test_canny_square_edges_lie_on_boundary():
    img = _square_image()
    edges = canny(img, 50, 150)
    assert set(np.unique(edges).tolist()) <= {0, 255}
    ys, xs = np.nonzero(edges)
    assert len(ys) > 0
    near_x = (np.abs(xs - 10) <= 1) | (np.abs(xs - 29) <= 1)
    near_y = (np.abs(ys - 10) <= 1) | (np.abs(ys - 29) <= 1)
    assert np.all(near_x | near_y)
    assert np.any(edges[20, 8:13])
    assert np.any(edges[20, 27:32])
    assert np.any(edges[8:13, 20])
    assert np.any(edges[27:32, 20])


def test_canny_swaps_thresholds():
    img = _square_image()
    assert np.array_equal(canny(img, 150, 50), canny(img, 50, 150))


def test_canny_rejects_bad_aperture():
    with pytest.raises(ValueError):
        canny(np.zeros((10, 10), dtype=np.uint8), 50, 150, 4)