"""STAC catalog access and raster data providers."""

from floodmap.stac.client import StacClient
from floodmap.stac.provider import (
    QualityPredicates,
    RasterDataProvider,
    SceneInfo,
    StacRasterProvider,
    StaticRasterProvider,
)

__all__ = [
    "StacClient",
    "QualityPredicates",
    "RasterDataProvider",
    "SceneInfo",
    "StacRasterProvider",
    "StaticRasterProvider",
]
