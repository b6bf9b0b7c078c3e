"""Flood mask construction from change ratio and terrain plausibility."""

import threading
from collections.abc import Callable
from typing import Any

import structlog
from shapely.geometry.base import BaseGeometry

from floodmap.raster.model import Raster

logger = structlog.get_logger()

DEFAULT_RATIO_THRESHOLD = -0.25
DEFAULT_ELEVATION_THRESHOLD_M = 1200.0


def elevation_mask(elevation: Raster, threshold_m: float = DEFAULT_ELEVATION_THRESHOLD_M) -> Raster:
    """Self-masked lowland raster: valid only where elevation < ``threshold_m``.

    Args:
        elevation: Static elevation raster in metres.
        threshold_m: Upper elevation bound for plausible flooding.

    Returns:
        Boolean raster whose represented pixels are all True.
    """
    lowland = elevation.valid & (elevation.data < threshold_m)
    mask = elevation.with_values(lowland, lowland, name="lowlands")

    logger.debug(
        "Elevation mask built",
        threshold_m=threshold_m,
        lowland_pixels=mask.valid_count(),
        total_pixels=int(lowland.size),
    )
    return mask


def build_flood_mask(
    change_ratio: Raster,
    lowlands: Raster,
    aoi: BaseGeometry,
    aoi_crs: Any,
    ratio_threshold: float = DEFAULT_RATIO_THRESHOLD,
) -> Raster:
    """Combine the change threshold with the elevation mask inside the AOI.

    A pixel is represented (True) only where the change ratio is defined and
    below ``ratio_threshold``, the elevation mask holds, and the pixel centre
    falls inside the AOI. Undefined ratios fail closed. Everything else is
    absent from the mask, not stored as False.

    Args:
        change_ratio: Combined NDR raster.
        lowlands: Elevation mask on the same grid.
        aoi: Area of interest geometry.
        aoi_crs: CRS of ``aoi``.
        ratio_threshold: Ratio below which a pixel counts as flooded.

    Returns:
        Self-masked boolean flood raster.
    """
    if not change_ratio.same_grid(lowlands):
        raise ValueError(
            f"Change ratio {change_ratio.shape} and elevation mask {lowlands.shape} grids differ"
        )

    logger.info("Building flood mask", ratio_threshold=ratio_threshold)

    below = change_ratio.valid & (change_ratio.data.fillna(0.0) < ratio_threshold)
    inside = change_ratio.aoi_mask(aoi, aoi_crs)
    flooded = below & lowlands.valid & inside
    mask = change_ratio.with_values(flooded, flooded, name="flood")

    flooded_pixels = mask.valid_count()
    if flooded_pixels == 0:
        logger.warning("Flood mask is empty", ratio_threshold=ratio_threshold)
    else:
        logger.info(
            "Flood mask built",
            flooded_pixels=flooded_pixels,
            below_threshold_pixels=int(below.sum()),
        )
    return mask


class ElevationMaskCache:
    """Memoises elevation masks per AOI and threshold.

    Elevation is time-invariant, so runs sharing an AOI can reuse the mask.
    Instances are passed explicitly; there is no module-level cache.
    """

    def __init__(self) -> None:
        self._masks: dict[tuple[str, str, str, float], Raster] = {}
        self._lock = threading.Lock()

    @staticmethod
    def key(aoi: BaseGeometry, aoi_crs: Any, product_id: str, threshold_m: float) -> tuple[str, str, str, float]:
        return (aoi.wkt, str(aoi_crs), product_id, float(threshold_m))

    def get_or_build(
        self,
        aoi: BaseGeometry,
        aoi_crs: Any,
        product_id: str,
        threshold_m: float,
        load_elevation: Callable[[], Raster],
    ) -> Raster:
        """Return the cached mask or build it from ``load_elevation()``."""
        key = self.key(aoi, aoi_crs, product_id, threshold_m)
        with self._lock:
            cached = self._masks.get(key)
        if cached is not None:
            logger.debug("Elevation mask cache hit", product_id=product_id, threshold_m=threshold_m)
            return cached

        mask = elevation_mask(load_elevation(), threshold_m)
        with self._lock:
            self._masks.setdefault(key, mask)
            return self._masks[key]

    def __len__(self) -> int:
        with self._lock:
            return len(self._masks)

    def clear(self) -> None:
        with self._lock:
            self._masks.clear()
