"""Temporal median compositing of co-registered scenes."""

import warnings

import numpy as np
import structlog
import xarray as xr

from floodmap.raster.model import Raster

logger = structlog.get_logger()

# Sentinel-2 L2A digital numbers to surface reflectance
REFLECTANCE_DIVISOR = 10_000.0


def median_composite(scenes: list[Raster], name: str = "") -> Raster:
    """Pixel-wise median of all scenes, ignoring each scene's invalid pixels.

    A pixel with no valid observation in any scene is invalid in the result.

    Args:
        scenes: Scenes already aligned to a common grid (same shape/transform).
        name: Name of the composite.

    Returns:
        Composite raster with the bands of the input scenes.
    """
    if not scenes:
        raise ValueError("Cannot composite an empty scene list")

    reference = scenes[0]
    for scene in scenes[1:]:
        if not reference.same_grid(scene):
            raise ValueError(
                f"Scene {scene.name!r} is not aligned with {reference.name!r}; reproject first"
            )

    stacked = xr.concat(
        [s.data.astype(np.float64).where(s.valid) for s in scenes],
        dim="time",
        coords="minimal",
        compat="override",
        join="override",
    )
    observations = xr.concat(
        [s.valid for s in scenes],
        dim="time",
        coords="minimal",
        compat="override",
        join="override",
    ).sum("time")

    with warnings.catch_warnings():
        # All-NaN slices are expected where no scene has data
        warnings.simplefilter("ignore", category=RuntimeWarning)
        median = stacked.median(dim="time", skipna=True)

    valid = observations > 0
    logger.debug(
        "Median composite built",
        name=name,
        scenes=len(scenes),
        valid_pixels=int(valid.sum()),
    )
    return reference.with_values(median, valid, name=name or reference.name)


def to_reflectance(optical: Raster, divisor: float = REFLECTANCE_DIVISOR) -> Raster:
    """Scale an optical composite to reflectance (typical display range 0-0.3)."""
    return optical.with_values(optical.data / divisor, optical.valid, name=f"{optical.name}_reflectance")
