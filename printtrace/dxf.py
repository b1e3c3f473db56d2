"""Export of traced contours as DXF (AutoCAD 2000) lightweight polylines."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

DXF_VERSION = "AC1015"
COLOR_BY_LAYER = 256


@dataclass(frozen=True)
class Vertex:
    """A 2D polyline vertex in millimetres."""

    x: float
    y: float
    bulge: float = 0.0


@dataclass
class LWPolyline:
    """A lightweight polyline entity."""

    vertices: list[Vertex] = field(default_factory=list)
    layer: str = "Default"
    color: int = COLOR_BY_LAYER
    closed: bool = True
    elevation: float = 0.0
    thickness: float = 0.0


def _fmt(value) -> str:
    if isinstance(value, float):
        return repr(value)
    return str(value)


class _Emitter:
    def __init__(self) -> None:
        self.lines: list[str] = []
        self._next_handle = 1

    def handle(self) -> str:
        value = format(self._next_handle, "X")
        self._next_handle += 1
        return value

    @property
    def seed(self) -> str:
        return format(self._next_handle, "X")

    def add(self, code: int, value) -> None:
        self.lines.append(f"{code:>3}")
        self.lines.append(_fmt(value))

    def begin_table(self, name: str, count: int) -> str:
        h = self.handle()
        self.add(0, "TABLE")
        self.add(2, name)
        self.add(5, h)
        self.add(330, "0")
        self.add(100, "AcDbSymbolTable")
        self.add(70, count)
        return h

    def record(self, kind: str, subclass: str, owner: str, name: str) -> str:
        h = self.handle()
        self.add(0, kind)
        self.add(5, h)
        self.add(330, owner)
        self.add(100, "AcDbSymbolTableRecord")
        self.add(100, subclass)
        self.add(2, name)
        self.add(70, 0)
        return h


class DXFWriter:
    """Collects polylines and writes them to a DXF file, scaling pixels to millimetres."""

    def __init__(self, pixels_per_mm):
        if pixels_per_mm <= 0:
            raise ValueError(f"pixels_per_mm must be positive, got {pixels_per_mm}")
        self.pixels_per_mm = float(pixels_per_mm)
        self.polylines: list[LWPolyline] = []

    def add_contour(self, contour) -> LWPolyline:
        """Add a closed polyline from pixel coordinates."""
        polyline = LWPolyline(
            vertices=[
                Vertex(float(x) / self.pixels_per_mm, float(y) / self.pixels_per_mm)
                for x, y in contour
            ]
        )
        self.polylines.append(polyline)
        return polyline

    def add_lwpolyline(self, polyline) -> None:
        """Add a prepared polyline as-is."""
        self.polylines.append(polyline)

    def render(self) -> str:
        """Return the DXF document for the polylines collected so far."""
        out = _Emitter()
        self._tables(out)
        model, paper = self._block_records
        self._blocks(out, model, paper)
        self._entities(out, model)
        self._objects(out)

        head = _Emitter()
        head.add(0, "SECTION")
        head.add(2, "HEADER")
        head.add(9, "$ACADVER")
        head.add(1, DXF_VERSION)
        head.add(9, "$HANDSEED")
        head.add(5, out.seed)
        head.add(9, "$INSUNITS")
        head.add(70, 4)
        head.add(9, "$MEASUREMENT")
        head.add(70, 1)
        head.add(0, "ENDSEC")

        tail = _Emitter()
        tail.add(0, "EOF")
        return "\n".join(head.lines + out.lines + tail.lines) + "\n"

    def write(self, path) -> Path:
        """Write the DXF document to a file and clear the collected polylines."""
        target = Path(path)
        target.write_text(self.render(), encoding="utf-8")
        self.polylines.clear()
        return target

    def _tables(self, out: _Emitter) -> None:
        out.add(0, "SECTION")
        out.add(2, "TABLES")

        for name in ("VPORT",):
            out.begin_table(name, 0)
            out.add(0, "ENDTAB")

        table = out.begin_table("LTYPE", 3)
        for name, desc in (("ByBlock", ""), ("ByLayer", ""), ("CONTINUOUS", "Solid line")):
            out.record("LTYPE", "AcDbLinetypeTableRecord", table, name)
            out.add(3, desc)
            out.add(72, 65)
            out.add(73, 0)
            out.add(40, 0.0)
        out.add(0, "ENDTAB")

        layers = ["0"] + sorted({p.layer for p in self.polylines} - {"0"})
        table = out.begin_table("LAYER", len(layers))
        for name in layers:
            out.record("LAYER", "AcDbLayerTableRecord", table, name)
            out.add(62, 7)
            out.add(6, "CONTINUOUS")
        out.add(0, "ENDTAB")

        table = out.begin_table("STYLE", 1)
        out.record("STYLE", "AcDbTextStyleTableRecord", table, "Standard")
        out.add(40, 0.0)
        out.add(41, 1.0)
        out.add(50, 0.0)
        out.add(71, 0)
        out.add(42, 2.5)
        out.add(3, "txt")
        out.add(4, "")
        out.add(0, "ENDTAB")

        for name in ("VIEW", "UCS"):
            out.begin_table(name, 0)
            out.add(0, "ENDTAB")

        table = out.begin_table("APPID", 1)
        out.record("APPID", "AcDbRegAppTableRecord", table, "ACAD")
        out.add(0, "ENDTAB")

        table = out.begin_table("BLOCK_RECORD", 2)
        model = self._block_record(out, table, "*Model_Space")
        paper = self._block_record(out, table, "*Paper_Space")
        out.add(0, "ENDTAB")
        self._block_records = (model, paper)

        out.add(0, "ENDSEC")

    @staticmethod
    def _block_record(out: _Emitter, table: str, name: str) -> str:
        h = out.handle()
        out.add(0, "BLOCK_RECORD")
        out.add(5, h)
        out.add(330, table)
        out.add(100, "AcDbSymbolTableRecord")
        out.add(100, "AcDbBlockTableRecord")
        out.add(2, name)
        return h

    @staticmethod
    def _blocks(out: _Emitter, model: str, paper: str) -> None:
        out.add(0, "SECTION")
        out.add(2, "BLOCKS")
        for name, owner in (("*Model_Space", model), ("*Paper_Space", paper)):
            out.add(0, "BLOCK")
            out.add(5, out.handle())
            out.add(330, owner)
            out.add(100, "AcDbEntity")
            out.add(8, "0")
            out.add(100, "AcDbBlockBegin")
            out.add(2, name)
            out.add(70, 0)
            out.add(10, 0.0)
            out.add(20, 0.0)
            out.add(30, 0.0)
            out.add(3, name)
            out.add(1, "")
            out.add(0, "ENDBLK")
            out.add(5, out.handle())
            out.add(330, owner)
            out.add(100, "AcDbEntity")
            out.add(8, "0")
            out.add(100, "AcDbBlockEnd")
        out.add(0, "ENDSEC")

    def _entities(self, out: _Emitter, model: str) -> None:
        out.add(0, "SECTION")
        out.add(2, "ENTITIES")
        for polyline in self.polylines:
            out.add(0, "LWPOLYLINE")
            out.add(5, out.handle())
            out.add(330, model)
            out.add(100, "AcDbEntity")
            out.add(8, polyline.layer)
            out.add(62, polyline.color)
            out.add(100, "AcDbPolyline")
            out.add(90, len(polyline.vertices))
            out.add(70, 1 if polyline.closed else 0)
            out.add(38, float(polyline.elevation))
            out.add(39, float(polyline.thickness))
            for vertex in polyline.vertices:
                out.add(10, float(vertex.x))
                out.add(20, float(vertex.y))
                if vertex.bulge:
                    out.add(42, float(vertex.bulge))
        out.add(0, "ENDSEC")

    @staticmethod
    def _objects(out: _Emitter) -> None:
        root = out.handle()
        group = out.handle()
        out.add(0, "SECTION")
        out.add(2, "OBJECTS")
        out.add(0, "DICTIONARY")
        out.add(5, root)
        out.add(330, "0")
        out.add(100, "AcDbDictionary")
        out.add(281, 1)
        out.add(3, "ACAD_GROUP")
        out.add(350, group)
        out.add(0, "DICTIONARY")
        out.add(5, group)
        out.add(330, root)
        out.add(100, "AcDbDictionary")
        out.add(281, 1)
        out.add(0, "ENDSEC")


def save_contour_as_dxf(contour, pixels_per_mm, output_path) -> Path:
    """Write a single closed contour, given in pixels, to a DXF file in millimetres."""
    logger.info("Saving contour to DXF: %s", output_path)
    writer = DXFWriter(pixels_per_mm)
    writer.add_contour(contour)
    path = writer.write(output_path)
    logger.info("DXF file saved successfully.")
    return path