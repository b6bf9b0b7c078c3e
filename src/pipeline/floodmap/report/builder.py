"""Flooded area report from a class histogram."""

from dataclasses import dataclass, field
from typing import Any

import structlog

from floodmap.raster.landcover import class_color, resolve_class_name
from floodmap.raster.zonal import ClassHistogram

logger = structlog.get_logger()

SQUARE_METERS_PER_HECTARE = 10_000.0
NO_FLOOD_MESSAGE = "No flooded area detected."


@dataclass(frozen=True)
class ChartRequest:
    """Rendering request for the external visualization sink."""

    chart_type: str = "ColumnChart"
    title: str = "Flooded Area by Land Cover Type"
    h_axis_title: str = "Land Cover"
    v_axis_title: str = "Flooded Area (ha)"
    series_color: str = "#1f77b4"
    no_data_message: str = NO_FLOOD_MESSAGE

    def to_dict(self) -> dict[str, Any]:
        return {
            "chartType": self.chart_type,
            "title": self.title,
            "hAxis": {"title": self.h_axis_title},
            "vAxis": {"title": self.v_axis_title},
            "legend": {"position": "none"},
            "colors": [self.series_color],
            "noDataMessage": self.no_data_message,
        }


@dataclass(frozen=True)
class ReportEntry:
    """One land cover class row of the report."""

    code: int
    label: str
    pixel_count: int
    area_ha: float
    color: str


@dataclass(frozen=True)
class AreaReport:
    """Flooded area per land cover class.

    Entries follow the histogram order (ascending class code); renderers use
    this order verbatim.
    """

    entries: tuple[ReportEntry, ...]
    scale_m: float
    chart: ChartRequest = field(default_factory=ChartRequest)

    @property
    def total_area_ha(self) -> float:
        return sum(e.area_ha for e in self.entries)

    @property
    def rows(self) -> list[tuple[str, float]]:
        """(label, area_ha) pairs in report order."""
        return [(e.label, e.area_ha) for e in self.entries]

    def chart_data(self) -> list[list[Any]]:
        """Header row followed by one row per class."""
        return [[self.chart.h_axis_title, self.chart.v_axis_title]] + [
            [label, area] for label, area in self.rows
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "scale_m": self.scale_m,
            "total_area_ha": self.total_area_ha,
            "entries": [
                {
                    "code": e.code,
                    "label": e.label,
                    "pixel_count": e.pixel_count,
                    "area_ha": e.area_ha,
                    "color": e.color,
                }
                for e in self.entries
            ],
            "chart": self.chart.to_dict(),
        }


@dataclass(frozen=True)
class NoFloodDetected:
    """Valid run whose flood mask covered no land cover pixels. No chart."""

    message: str = NO_FLOOD_MESSAGE

    def to_dict(self) -> dict[str, Any]:
        return {"no_flood_detected": True, "message": self.message}


def pixel_area_ha(scale_m: float) -> float:
    """Area of one square pixel at ``scale_m`` in hectares."""
    return scale_m * scale_m / SQUARE_METERS_PER_HECTARE


def build_report(
    histogram: ClassHistogram,
    chart: ChartRequest | None = None,
) -> AreaReport | NoFloodDetected:
    """Convert pixel counts per class into labelled hectare areas.

    Args:
        histogram: Class code to pixel count mapping.
        chart: Rendering options; defaults to a column chart.

    Returns:
        AreaReport, or NoFloodDetected when the histogram is empty.
    """
    chart = chart or ChartRequest()
    if histogram.is_empty():
        logger.info("No flooded area detected")
        return NoFloodDetected(message=chart.no_data_message)

    factor = pixel_area_ha(histogram.scale_m)
    entries = tuple(
        ReportEntry(
            code=code,
            label=resolve_class_name(code),
            pixel_count=count,
            area_ha=count * factor,
            color=class_color(code),
        )
        for code, count in histogram.counts.items()
    )
    report = AreaReport(entries=entries, scale_m=histogram.scale_m, chart=chart)

    logger.info(
        "Area report built",
        classes=len(entries),
        total_area_ha=f"{report.total_area_ha:.2f}",
    )
    return report
