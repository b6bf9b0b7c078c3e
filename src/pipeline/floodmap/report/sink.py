"""Report emitters for the chart/report presentation layer."""

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol

import click
import structlog

from floodmap.raster.zonal import ClassHistogram
from floodmap.report.builder import AreaReport, NoFloodDetected

logger = structlog.get_logger()


class VisualizationSink(Protocol):
    """Receives the finished report for rendering."""

    def emit(self, report: AreaReport | NoFloodDetected, histogram: ClassHistogram | None = None) -> None:
        ...


class ConsoleSink:
    """Prints the report as a text column chart."""

    def __init__(self, echo: Callable[[str], Any] = click.echo, bar_width: int = 40):
        self.echo = echo
        self.bar_width = bar_width

    def emit(self, report: AreaReport | NoFloodDetected, histogram: ClassHistogram | None = None) -> None:
        if isinstance(report, NoFloodDetected):
            self.echo(f"WARNING: {report.message}")
            return

        self.echo(report.chart.title)
        self.echo("-" * len(report.chart.title))

        label_width = max(
            len(report.chart.h_axis_title), *(len(label) for label, _ in report.rows)
        )
        largest = max((area for _, area in report.rows), default=0.0)

        self.echo(f"{report.chart.h_axis_title:<{label_width}}  {report.chart.v_axis_title:>18}")
        for label, area in report.rows:
            bar_len = int(round(self.bar_width * area / largest)) if largest > 0 else 0
            self.echo(f"{label:<{label_width}}  {area:>18.2f}  {'#' * bar_len}")
        self.echo(f"{'Total':<{label_width}}  {report.total_area_ha:>18.2f}")


class JsonSink:
    """Writes histogram and report to a JSON file."""

    def __init__(self, output_path: Path):
        self.output_path = output_path

    def emit(self, report: AreaReport | NoFloodDetected, histogram: ClassHistogram | None = None) -> None:
        payload: dict[str, Any] = {
            "histogram": histogram.to_dict() if histogram is not None else None,
            "report": report.to_dict(),
        }
        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.output_path, "w") as f:
            json.dump(payload, f, indent=2)
        logger.info("Report written", path=str(self.output_path))
