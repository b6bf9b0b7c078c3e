"""Area report building and emission."""

from floodmap.report.builder import (
    AreaReport,
    ChartRequest,
    NoFloodDetected,
    ReportEntry,
    build_report,
)
from floodmap.report.sink import ConsoleSink, JsonSink, VisualizationSink

__all__ = [
    "AreaReport",
    "ChartRequest",
    "NoFloodDetected",
    "ReportEntry",
    "build_report",
    "ConsoleSink",
    "JsonSink",
    "VisualizationSink",
]
