"""Zonal frequency histogram of a masked categorical raster."""

import math
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import structlog
from pyproj import CRS
from shapely.geometry.base import BaseGeometry

from floodmap.errors import ResourceLimitExceeded
from floodmap.geo_utils import get_utm_crs, reproject_geometry
from floodmap.raster.model import Raster

logger = structlog.get_logger()

DEFAULT_SCALE_M = 10.0
DEFAULT_MAX_PIXELS = 1_000_000_000


@dataclass(frozen=True)
class ClassHistogram:
    """Pixel count per class code at a sampling scale.

    ``counts`` iterates in ascending class code order. Excluded pixels are
    never counted.
    """

    counts: dict[int, int] = field(default_factory=dict)
    scale_m: float = DEFAULT_SCALE_M

    @property
    def total_pixels(self) -> int:
        return sum(self.counts.values())

    def is_empty(self) -> bool:
        return not self.counts

    def to_dict(self) -> dict[str, int]:
        """Mapping keyed by the code as a string (JSON-friendly)."""
        return {str(code): count for code, count in self.counts.items()}


def _metric_crs(raster_crs: Any, aoi: BaseGeometry, aoi_crs: Any) -> CRS:
    """Raster CRS if projected, otherwise the UTM zone of the AOI centroid."""
    if raster_crs is not None and CRS.from_user_input(raster_crs).is_projected:
        return CRS.from_user_input(raster_crs)
    centroid = reproject_geometry(aoi, aoi_crs, "EPSG:4326").centroid
    return get_utm_crs(centroid.x, centroid.y)


def estimate_pixel_count(aoi: BaseGeometry, aoi_crs: Any, metric_crs: Any, scale_m: float) -> int:
    """Number of ``scale_m`` pixels covering the AOI bounding box."""
    min_x, min_y, max_x, max_y = reproject_geometry(aoi, aoi_crs, metric_crs).bounds
    cols = math.ceil((max_x - min_x) / scale_m)
    rows = math.ceil((max_y - min_y) / scale_m)
    return max(cols, 1) * max(rows, 1)


def zonal_histogram(
    raster: Raster,
    aoi: BaseGeometry,
    aoi_crs: Any,
    scale_m: float = DEFAULT_SCALE_M,
    max_pixels: int = DEFAULT_MAX_PIXELS,
) -> ClassHistogram:
    """Count valid pixels per distinct class code at ``scale_m``.

    The pixel budget is checked against the AOI extent before any resampling,
    so an oversized request fails quickly instead of exhausting memory.

    Args:
        raster: Masked categorical raster (e.g. flooded land cover).
        aoi: Region the aggregation is bounded to.
        aoi_crs: CRS of ``aoi``.
        scale_m: Sampling scale in metres.
        max_pixels: Maximum number of pixels the aggregation may read.

    Returns:
        ClassHistogram in ascending class code order.

    Raises:
        ResourceLimitExceeded: If the AOI at ``scale_m`` exceeds ``max_pixels``.
    """
    if scale_m <= 0:
        raise ValueError(f"scale_m must be > 0, got {scale_m}")

    metric_crs = _metric_crs(raster.crs, aoi, aoi_crs)
    requested = estimate_pixel_count(aoi, aoi_crs, metric_crs, scale_m)
    if requested > max_pixels:
        logger.warning(
            "Pixel budget exceeded",
            requested_pixels=requested,
            max_pixels=max_pixels,
            scale_m=scale_m,
        )
        raise ResourceLimitExceeded(requested, int(max_pixels))

    size_x, size_y = raster.pixel_size_m()
    if not (math.isclose(size_x, scale_m, rel_tol=1e-6) and math.isclose(size_y, scale_m, rel_tol=1e-6)):
        logger.info(
            "Resampling to sampling scale",
            from_resolution_m=(round(size_x, 3), round(size_y, 3)),
            scale_m=scale_m,
        )
        raster = raster.reproject(metric_crs, resolution=scale_m)

    values = raster.valid_values()
    codes, counts = np.unique(np.rint(values).astype(np.int64), return_counts=True)
    histogram = ClassHistogram(
        counts={int(code): int(count) for code, count in zip(codes, counts)},
        scale_m=scale_m,
    )

    logger.info(
        "Zonal histogram computed",
        classes=len(histogram.counts),
        total_pixels=histogram.total_pixels,
        scale_m=scale_m,
    )
    return histogram
