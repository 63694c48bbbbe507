"""Exporter SPI and implementations."""

from .base import BaseExporter, NullExporter
from .dual_sink import DualSink
from .file_exporter import NdjsonExporter, iter_lines, parse_line

__all__ = ["BaseExporter", "DualSink", "NdjsonExporter", "NullExporter", "iter_lines", "parse_line"]
