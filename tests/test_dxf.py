import pytest

from printtrace.dxf import DXFWriter, LWPolyline, Vertex, save_contour_as_dxf


def _pairs(text):
    lines = text.rstrip("\n").split("\n")
    assert len(lines) % 2 == 0
    return [(int(lines[i]), lines[i + 1]) for i in range(0, len(lines), 2)]


def _entities(pairs, kind):
    result = []
    current = None
    for code, value in pairs:
        if code == 0:
            current = [] if value == kind else None
            if current is not None:
                result.append(current)
        elif current is not None:
            current.append((code, value))
    return result


def _values(entity, code):
    return [v for c, v in entity if c == code]


def test_render_declares_version():
    pairs = _pairs(DXFWriter(1.0).render())
    idx = pairs.index((9, "$ACADVER"))
    assert pairs[idx + 1] == (1, "AC1015")
    assert pairs[-1] == (0, "EOF")


def test_add_contour_scales_to_millimetres():
    ppm = 4.0
    contour = [(10, 20), (30, 40), (50, 0)]
    writer = DXFWriter(ppm)
    polyline = writer.add_contour(contour)
    assert [(v.x, v.y) for v in polyline.vertices] == pytest.approx(
        [(x / ppm, y / ppm) for x, y in contour]
    )
    assert writer.polylines == [polyline]


def test_rendered_polyline_fields():
    ppm = 2.0
    contour = [(10, 20), (30, 40), (50, 0)]
    writer = DXFWriter(ppm)
    writer.add_contour(contour)
    (entity,) = _entities(_pairs(writer.render()), "LWPOLYLINE")
    assert _values(entity, 90) == [str(len(contour))]
    assert _values(entity, 70) == ["1"]
    assert _values(entity, 8) == ["Default"]
    assert _values(entity, 62) == ["256"]
    xs = [float(v) for v in _values(entity, 10)]
    ys = [float(v) for v in _values(entity, 20)]
    assert xs == pytest.approx([x / ppm for x, _ in contour])
    assert ys == pytest.approx([y / ppm for _, y in contour])


def test_handles_unique_and_below_seed():
    writer = DXFWriter(1.0)
    writer.add_contour([(0, 0), (5, 0), (5, 5)])
    writer.add_contour([(1, 1), (2, 1), (2, 2)])
    pairs = _pairs(writer.render())
    seed_idx = pairs.index((9, "$HANDSEED"))
    seed = int(pairs[seed_idx + 1][1], 16)
    handles = [int(v, 16) for c, v in pairs if c == 5 and pairs.index((c, v)) != seed_idx + 1]
    assert len(handles) == len(set(handles))
    assert max(handles) < seed


def test_custom_layer_is_declared():
    writer = DXFWriter(1.0)
    writer.add_lwpolyline(LWPolyline(vertices=[Vertex(0, 0), Vertex(1, 0), Vertex(1, 1)], layer="Cut"))
    layers = _entities(_pairs(writer.render()), "LAYER")
    assert {_values(layer, 2)[0] for layer in layers} == {"0", "Cut"}


def test_bulge_written_only_when_nonzero():
    writer = DXFWriter(1.0)
    writer.add_lwpolyline(LWPolyline(vertices=[Vertex(0, 0, 0.5), Vertex(1, 0), Vertex(1, 1)]))
    (entity,) = _entities(_pairs(writer.render()), "LWPOLYLINE")
    assert [float(v) for v in _values(entity, 42)] == [0.5]


def test_open_polyline_flag():
    writer = DXFWriter(1.0)
    writer.add_lwpolyline(LWPolyline(vertices=[Vertex(0, 0), Vertex(3, 0)], closed=False))
    (entity,) = _entities(_pairs(writer.render()), "LWPOLYLINE")
    assert _values(entity, 70) == ["0"]


def test_write_creates_file_and_clears(tmp_path):
    writer = DXFWriter(1.0)
    writer.add_contour([(0, 0), (10, 0), (10, 10)])
    path = writer.write(tmp_path / "out.dxf")
    text = path.read_text(encoding="utf-8")
    assert len(_entities(_pairs(text), "LWPOLYLINE")) == 1
    assert writer.polylines == []


def test_save_contour_as_dxf(tmp_path):
    target = tmp_path / "contour.dxf"
    result = save_contour_as_dxf([(0, 0), (20, 0), (20, 20), (0, 20)], 2.0, target)
    assert result == target
    (entity,) = _entities(_pairs(target.read_text(encoding="utf-8")), "LWPOLYLINE")
    assert _values(entity, 90) == ["4"]


@pytest.mark.parametrize("ppm", [0, -1.5])
def test_non_positive_scale_rejected(ppm):
    with pytest.raises(ValueError):
        DXFWriter(ppm)


def test_save_to_missing_directory_raises(tmp_path):
    with pytest.raises(OSError):
        save_contour_as_dxf([(0, 0), (1, 0), (1, 1)], 1.0, tmp_path / "missing" / "x.dxf")