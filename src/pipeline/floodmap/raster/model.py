"""Raster value type with an explicit validity mask.

Every pipeline stage exchanges ``Raster`` values. Nodata and self-masked
pixels are carried in the parallel boolean ``valid`` array, never as a
numeric sentinel, so excluded pixels cannot leak into counts.
"""

from dataclasses import dataclass
from typing import Any

import numpy as np
import rioxarray  # noqa: F401 - registers the .rio accessor
import xarray as xr
from rasterio import features
from rasterio.enums import Resampling
from rasterio.transform import from_origin
from shapely.geometry.base import BaseGeometry

from floodmap.geo_utils import pixel_size_m, reproject_geometry


@dataclass(frozen=True)
class Raster:
    """A georeferenced grid with one or more bands and a validity mask.

    ``data`` has dims ``(y, x)`` or ``(band, y, x)``; ``valid`` has the same
    shape and coordinates. Values under invalid pixels are undefined.
    """

    data: xr.DataArray
    valid: xr.DataArray
    name: str = ""

    def __post_init__(self) -> None:
        if self.data.shape != self.valid.shape:
            raise ValueError(
                f"Validity mask shape {self.valid.shape} does not match data {self.data.shape}"
            )

    @classmethod
    def from_dataarray(
        cls,
        data: xr.DataArray,
        nodata: float | None = None,
        name: str = "",
    ) -> "Raster":
        """Wrap a DataArray, treating NaN and ``nodata`` (if given) as invalid."""
        if nodata is None:
            nodata = data.rio.nodata
        valid = data.notnull()
        if nodata is not None and not np.isnan(nodata):
            valid = valid & (data != nodata)
        return cls(data=data, valid=valid.astype(bool), name=name or str(data.name or ""))

    def with_values(self, data: xr.DataArray, valid: xr.DataArray, name: str | None = None) -> "Raster":
        """New raster on the same grid, keeping spatial metadata."""
        data = _copy_spatial_ref(self.data, data)
        valid = _copy_spatial_ref(self.data, valid.astype(bool))
        return Raster(data=data, valid=valid, name=self.name if name is None else name)

    @property
    def crs(self) -> Any:
        return self.data.rio.crs

    @property
    def transform(self) -> Any:
        return self.data.rio.transform()

    @property
    def shape(self) -> tuple[int, int]:
        return self.data.shape[-2], self.data.shape[-1]

    @property
    def band_names(self) -> list[str]:
        if "band" not in self.data.dims:
            return [self.name] if self.name else []
        return [str(b) for b in self.data.coords["band"].values]

    def band(self, name: str) -> "Raster":
        """Select a single band as a 2D raster."""
        if "band" not in self.data.dims:
            if name == self.name:
                return self
            raise KeyError(f"Raster {self.name!r} has no band {name!r}")
        if name not in self.band_names:
            raise KeyError(f"Raster {self.name!r} has no band {name!r}")
        return Raster(
            data=self.data.sel(band=name, drop=True),
            valid=self.valid.sel(band=name, drop=True),
            name=name,
        )

    def pixel_size_m(self) -> tuple[float, float]:
        """Ground pixel size in metres as (x, y)."""
        lat = float(self.data.coords["y"].mean()) if "y" in self.data.coords else 0.0
        return pixel_size_m(self.data.rio.resolution(), self.crs, lat=lat)

    def valid_count(self) -> int:
        return int(self.valid.sum())

    def is_empty(self) -> bool:
        return not bool(self.valid.any())

    def valid_values(self) -> np.ndarray:
        """Flat array of values at valid pixels."""
        return np.asarray(self.data.values)[np.asarray(self.valid.values)]

    def same_grid(self, other: "Raster") -> bool:
        """True when both rasters share shape and transform."""
        if self.shape != other.shape:
            return False
        return np.allclose(tuple(self.transform)[:6], tuple(other.transform)[:6])

    def masked(self, mask: xr.DataArray | np.ndarray) -> "Raster":
        """Restrict validity to ``mask`` (True keeps the pixel)."""
        mask_values = np.asarray(mask, dtype=bool)
        valid = self.valid & xr.DataArray(
            np.broadcast_to(mask_values, self.valid.shape),
            coords=self.valid.coords,
            dims=self.valid.dims,
        )
        return self.with_values(self.data, valid)

    def aoi_mask(self, geometry: BaseGeometry, geometry_crs: Any) -> np.ndarray:
        """Boolean array, True for pixels whose centre lies inside ``geometry``."""
        if self.crs is not None:
            geometry = reproject_geometry(geometry, geometry_crs, self.crs)
        return features.geometry_mask(
            [geometry],
            out_shape=self.shape,
            transform=self.transform,
            invert=True,
        )

    def clip_to_aoi(self, geometry: BaseGeometry, geometry_crs: Any) -> "Raster":
        """Exclude every pixel outside the AOI. The grid itself is unchanged."""
        return self.masked(self.aoi_mask(geometry, geometry_crs))

    def reproject_match(self, reference: "Raster", resampling: Resampling = Resampling.nearest) -> "Raster":
        """Resample onto the grid of ``reference``."""
        if self.same_grid(reference) and self.crs == reference.crs:
            return self
        return self._reproject(
            lambda da, method, nodata: da.rio.reproject_match(
                reference.data, resampling=method, nodata=nodata
            ),
            resampling,
        )

    def reproject(
        self,
        dst_crs: Any,
        resolution: float,
        resampling: Resampling = Resampling.nearest,
    ) -> "Raster":
        """Resample to ``resolution`` (in ``dst_crs`` units)."""
        return self._reproject(
            lambda da, method, nodata: da.rio.reproject(
                dst_crs, resolution=resolution, resampling=method, nodata=nodata
            ),
            resampling,
        )

    def reproject_to_grid(
        self,
        dst_crs: Any,
        transform: Any,
        shape: tuple[int, int],
        resampling: Resampling = Resampling.nearest,
    ) -> "Raster":
        """Resample onto an explicit grid given by CRS, affine transform and shape."""
        if (
            self.crs == dst_crs
            and self.shape == tuple(shape)
            and np.allclose(tuple(self.transform)[:6], tuple(transform)[:6])
        ):
            return self
        return self._reproject(
            lambda da, method, nodata: da.rio.reproject(
                dst_crs, shape=shape, transform=transform, resampling=method, nodata=nodata
            ),
            resampling,
        )

    def _reproject(self, warp: Any, resampling: Resampling) -> "Raster":
        # Values and validity are warped separately; outside the source
        # footprint validity fills with 0 (invalid).
        values = self.data.astype(np.float64).where(self.valid).rio.write_nodata(np.nan)
        data = warp(values, resampling, np.nan)
        valid = warp(self.valid.astype(np.uint8).rio.write_nodata(0), Resampling.nearest, 0)
        valid = (valid.values == 1) & np.isfinite(data.values)
        return Raster(
            data=data,
            valid=xr.DataArray(valid, coords=data.coords, dims=data.dims),
            name=self.name,
        )


def _copy_spatial_ref(source: xr.DataArray, target: xr.DataArray) -> xr.DataArray:
    """Carry CRS and transform from ``source`` onto ``target`` when missing."""
    if target.rio.crs is None and source.rio.crs is not None:
        target = target.rio.write_crs(source.rio.crs)
        target = target.rio.write_transform(source.rio.transform())
    return target


def stack_bands(rasters: dict[str, Raster], name: str = "") -> Raster:
    """Stack same-grid 2D rasters into one multi-band raster."""
    names = list(rasters)
    data = xr.concat([rasters[n].data for n in names], dim="band").assign_coords(band=names)
    valid = xr.concat([rasters[n].valid for n in names], dim="band").assign_coords(band=names)
    return Raster(data=data, valid=valid, name=name)


def union_grid(rasters: list[Raster]) -> tuple[Any, Any, tuple[int, int]]:
    """Grid covering every raster's footprint.

    Uses the CRS and resolution of the first raster and stays aligned with
    its pixel edges. Returns ``(crs, transform, (rows, cols))``.
    """
    reference = rasters[0]
    crs = reference.crs
    res_x, res_y = (abs(r) for r in reference.data.rio.resolution())
    origin_x, origin_y = reference.transform.c, reference.transform.f

    bounds = [r.data.rio.transform_bounds(crs) for r in rasters]
    min_x = min(b[0] for b in bounds)
    min_y = min(b[1] for b in bounds)
    max_x = max(b[2] for b in bounds)
    max_y = max(b[3] for b in bounds)

    # Snap outwards to the reference pixel edges
    eps = 1e-6
    left = origin_x + np.floor((min_x - origin_x) / res_x + eps) * res_x
    right = origin_x + np.ceil((max_x - origin_x) / res_x - eps) * res_x
    top = origin_y - np.floor((origin_y - max_y) / res_y + eps) * res_y
    bottom = origin_y - np.ceil((origin_y - min_y) / res_y - eps) * res_y

    shape = (int(round((top - bottom) / res_y)), int(round((right - left) / res_x)))
    return crs, from_origin(float(left), float(top), res_x, res_y), shape
