"""Shared geospatial utility functions."""

import math
from typing import Any

from pyproj import CRS, Transformer
from shapely.geometry.base import BaseGeometry
from shapely.ops import transform as shapely_transform

# Metres per degree of latitude on the WGS84 ellipsoid (mean)
METERS_PER_DEGREE = 111_320.0


def get_utm_crs(lon: float, lat: float) -> CRS:
    """Get the appropriate UTM CRS for a given WGS84 coordinate.

    Args:
        lon: Longitude in degrees (-180 to 180).
        lat: Latitude in degrees (-90 to 90).

    Returns:
        pyproj CRS object for the appropriate UTM zone.
    """
    utm_zone = int((lon + 180) / 6) + 1
    utm_zone = max(1, min(60, utm_zone))
    hemisphere = "north" if lat >= 0 else "south"
    return CRS.from_string(f"+proj=utm +zone={utm_zone} +{hemisphere} +datum=WGS84")


def reproject_geometry(geometry: BaseGeometry, src_crs: Any, dst_crs: Any) -> BaseGeometry:
    """Reproject a shapely geometry between coordinate reference systems.

    Returns the input unchanged when both CRSs are equal.
    """
    src = CRS.from_user_input(src_crs)
    dst = CRS.from_user_input(dst_crs)
    if src == dst:
        return geometry
    transformer = Transformer.from_crs(src, dst, always_xy=True)
    return shapely_transform(transformer.transform, geometry)


def pixel_size_m(resolution: tuple[float, float], crs: Any, lat: float = 0.0) -> tuple[float, float]:
    """Ground size of a pixel in metres as (x, y).

    Args:
        resolution: Raster resolution in CRS units, as returned by ``rio.resolution()``.
        crs: Raster CRS.
        lat: Latitude used to scale longitude degrees for geographic CRSs.

    Returns:
        Absolute pixel width and height in metres.
    """
    res_x, res_y = abs(resolution[0]), abs(resolution[1])
    if crs is not None and CRS.from_user_input(crs).is_geographic:
        return (
            res_x * METERS_PER_DEGREE * math.cos(math.radians(lat)),
            res_y * METERS_PER_DEGREE,
        )
    return res_x, res_y
