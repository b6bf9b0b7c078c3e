"""Remote raster loading and clipping utilities."""

from typing import Any

import rioxarray as rxr
import structlog
import xarray as xr
from pyproj import Transformer
from rioxarray.merge import merge_arrays

from floodmap.raster.model import Raster

logger = structlog.get_logger()


def _bbox_in_crs(
    bbox: tuple[float, float, float, float],
    raster_crs: Any,
) -> tuple[float, float, float, float]:
    """Transform a WGS84 bbox into the raster CRS."""
    min_lon, min_lat, max_lon, max_lat = bbox
    if raster_crs and raster_crs.to_epsg() != 4326:
        transformer = Transformer.from_crs(4326, raster_crs, always_xy=True)
        # Transform all four corners to handle non-rectangular projections
        corners = [
            transformer.transform(min_lon, min_lat),
            transformer.transform(min_lon, max_lat),
            transformer.transform(max_lon, min_lat),
            transformer.transform(max_lon, max_lat),
        ]
        xs = [c[0] for c in corners]
        ys = [c[1] for c in corners]
        return min(xs), min(ys), max(xs), max(ys)
    return min_lon, min_lat, max_lon, max_lat


def load_band_from_url(url: str, bbox: tuple[float, float, float, float] | None = None) -> xr.DataArray:
    """Load a raster band directly from a URL, optionally clipping to bbox.

    Args:
        url: URL to the COG file.
        bbox: Optional bounding box to clip to (in WGS84/EPSG:4326).

    Returns:
        DataArray with the raster data, squeezed to 2D for single-band assets.
    """
    da = rxr.open_rasterio(url, masked=True)

    if bbox:
        min_x, min_y, max_x, max_y = _bbox_in_crs(bbox, da.rio.crs)
        da = da.rio.clip_box(minx=min_x, miny=min_y, maxx=max_x, maxy=max_y)

    # Squeeze single-band rasters
    if da.shape[0] == 1:
        da = da.squeeze("band", drop=True)

    return da


def load_raster(url: str, bbox: tuple[float, float, float, float] | None = None, name: str = "") -> Raster:
    """Load a remote band as a Raster with nodata carried in the validity mask."""
    logger.debug("Loading raster", url=url[:100], name=name)
    return Raster.from_dataarray(load_band_from_url(url, bbox), name=name)


def mosaic(rasters: list[Raster], name: str = "") -> Raster:
    """Merge adjacent tiles (e.g. DEM or land cover tiles) into one raster."""
    if len(rasters) == 1:
        return rasters[0]
    arrays = [r.data.where(r.valid).rio.write_nodata(float("nan")) for r in rasters]
    merged = merge_arrays(arrays, nodata=float("nan"))
    return Raster.from_dataarray(merged, name=name)
