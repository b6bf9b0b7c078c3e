"""Raster processing: compositing, speckle filtering, change detection and masking."""

from floodmap.raster.change import ChangeResult, combine_min, detect_change, normalized_difference_ratio
from floodmap.raster.composite import median_composite
from floodmap.raster.flood_mask import ElevationMaskCache, build_flood_mask, elevation_mask
from floodmap.raster.landcover import WORLDCOVER_CLASSES, flooded_land_cover, resolve_class_name
from floodmap.raster.model import Raster, stack_bands
from floodmap.raster.speckle import smooth
from floodmap.raster.zonal import ClassHistogram, zonal_histogram

__all__ = [
    "Raster",
    "stack_bands",
    "median_composite",
    "smooth",
    "normalized_difference_ratio",
    "combine_min",
    "detect_change",
    "ChangeResult",
    "elevation_mask",
    "build_flood_mask",
    "ElevationMaskCache",
    # Land cover overlay
    "WORLDCOVER_CLASSES",
    "resolve_class_name",
    "flooded_land_cover",
    "zonal_histogram",
    "ClassHistogram",
]
