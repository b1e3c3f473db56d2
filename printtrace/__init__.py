"""Trace object outlines from lightbox photographs and export them as DXF polylines."""

__version__ = "1.0.0"