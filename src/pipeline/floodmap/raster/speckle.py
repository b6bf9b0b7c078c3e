"""Speckle suppression for radar backscatter."""

import numpy as np
import structlog
import xarray as xr
from scipy import ndimage

from floodmap.raster.model import Raster

logger = structlog.get_logger()

DEFAULT_RADIUS_M = 30.0


def circular_kernel(radius_m: float, pixel_size: tuple[float, float]) -> np.ndarray:
    """Boolean footprint of pixels whose centre lies within ``radius_m``.

    Args:
        radius_m: Kernel radius in metres.
        pixel_size: Ground pixel size in metres as (x, y).

    Returns:
        2D boolean array with odd dimensions, centred on the origin pixel.
    """
    size_x, size_y = pixel_size
    half_x = int(np.floor(radius_m / size_x))
    half_y = int(np.floor(radius_m / size_y))

    dy, dx = np.mgrid[-half_y:half_y + 1, -half_x:half_x + 1]
    distance_sq = (dx * size_x) ** 2 + (dy * size_y) ** 2
    # Small epsilon so pixels exactly on the radius are included
    return distance_sq <= radius_m ** 2 * (1 + 1e-9)


def _focal_mean_2d(values: np.ndarray, valid: np.ndarray, kernel: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Mean over valid in-bounds neighbours; no edge padding."""
    weights = kernel.astype(np.float64)
    filled = np.where(valid, values, 0.0).astype(np.float64)

    total = ndimage.convolve(filled, weights, mode="constant", cval=0.0)
    count = ndimage.convolve(valid.astype(np.float64), weights, mode="constant", cval=0.0)

    out_valid = valid & (count > 0)
    with np.errstate(invalid="ignore", divide="ignore"):
        mean = np.where(out_valid, total / count, np.nan)
    return mean, out_valid


def smooth(raster: Raster, radius_m: float = DEFAULT_RADIUS_M) -> Raster:
    """Circular focal mean filter.

    Each valid pixel is replaced by the mean of the valid neighbours whose
    centres fall within ``radius_m``. Out-of-bounds neighbours are simply
    absent, so edge pixels average fewer values. Invalid pixels stay invalid.

    Args:
        raster: Input raster, single- or multi-band.
        radius_m: Kernel radius in metres. Zero returns the input unchanged.

    Returns:
        New smoothed raster with the same shape and grid.
    """
    if radius_m < 0:
        raise ValueError(f"radius_m must be >= 0, got {radius_m}")
    if radius_m == 0:
        return raster

    kernel = circular_kernel(radius_m, raster.pixel_size_m())

    values = np.asarray(raster.data.values, dtype=np.float64)
    valid = np.asarray(raster.valid.values, dtype=bool)

    if values.ndim == 3:
        planes = [_focal_mean_2d(values[i], valid[i], kernel) for i in range(values.shape[0])]
        mean = np.stack([p[0] for p in planes])
        out_valid = np.stack([p[1] for p in planes])
    else:
        mean, out_valid = _focal_mean_2d(values, valid, kernel)

    logger.debug(
        "Speckle filter applied",
        name=raster.name,
        radius_m=radius_m,
        kernel_pixels=int(kernel.sum()),
    )

    return raster.with_values(
        xr.DataArray(mean, coords=raster.data.coords, dims=raster.data.dims),
        xr.DataArray(out_valid, coords=raster.valid.coords, dims=raster.valid.dims),
    )
