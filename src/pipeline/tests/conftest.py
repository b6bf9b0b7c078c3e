"""Shared test fixtures for flood mapping pipeline tests."""

import os
from datetime import date, datetime, timezone

import numpy as np
import pytest
import rioxarray  # noqa: F401 - needed for .rio accessor on DataArrays
import xarray as xr
from rasterio.transform import from_origin
from shapely.geometry import box

from floodmap.config import AoiConfig, Config, ProcessingConfig, TimeWindow
from floodmap.raster.model import Raster
from floodmap.stac.provider import SceneInfo, StaticRasterProvider

CRS = "EPSG:32736"  # UTM 36S, covers the Nyando basin
ORIGIN = (500_000.0, 9_980_000.0)
PIXEL = 10.0

CONFIG_ENV_VARS = [
    "FLOOD_AOI_BBOX",
    "FLOOD_WINDOW",
    "REFERENCE_WINDOW",
    "STAC_CATALOG_URL",
    "MAX_CLOUD_COVER",
    "SMOOTHING_RADIUS_M",
    "CHANGE_RATIO_THRESHOLD",
    "ELEVATION_THRESHOLD_M",
    "SAMPLING_SCALE_M",
    "MAX_PIXELS",
    "EVALUATION_TIMEOUT_S",
    "FETCH_OPTICAL",
]


def build_raster(
    values,
    name: str = "",
    valid=None,
    bands: list[str] | None = None,
    pixel_size: float = PIXEL,
    origin: tuple[float, float] = ORIGIN,
    crs: str = CRS,
) -> Raster:
    """Create a georeferenced test raster.

    Args:
        values: 2D array, or 3D (band, y, x) array when ``bands`` is given.
        name: Raster name.
        valid: Optional boolean validity array; defaults to non-NaN pixels.
        bands: Band names for a 3D array.
        pixel_size: Pixel size in CRS units.
        origin: Upper-left corner (x, y).
        crs: Coordinate reference system.
    """
    values = np.asarray(values)
    rows, cols = values.shape[-2:]
    coords = {
        "y": origin[1] - pixel_size * (np.arange(rows) + 0.5),
        "x": origin[0] + pixel_size * (np.arange(cols) + 0.5),
    }
    dims: tuple[str, ...] = ("y", "x")
    if values.ndim == 3:
        dims = ("band", "y", "x")
        coords["band"] = bands or [str(i) for i in range(values.shape[0])]

    da = xr.DataArray(values, dims=dims, coords=coords, name=name or None)
    da = da.rio.write_crs(crs)
    da = da.rio.write_transform(from_origin(origin[0], origin[1], pixel_size, pixel_size))

    if valid is None:
        return Raster.from_dataarray(da, name=name)
    valid_da = xr.DataArray(np.asarray(valid, dtype=bool), dims=dims, coords=da.coords)
    return Raster(data=da, valid=valid_da, name=name)


def grid_aoi(rows: int, cols: int, name: str = "synthetic") -> AoiConfig:
    """AOI exactly covering a ``rows`` x ``cols`` test grid."""
    min_x, max_y = ORIGIN
    return AoiConfig(
        name=name,
        bbox=(min_x, max_y - rows * PIXEL, min_x + cols * PIXEL, max_y),
        crs=CRS,
    )


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Isolate tests from the developer's environment."""
    for name in CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    yield
    # load_dotenv writes straight to os.environ
    for name in CONFIG_ENV_VARS:
        os.environ.pop(name, None)


@pytest.fixture
def make_raster():
    """Factory for georeferenced test rasters."""
    return build_raster


@pytest.fixture
def aoi_4x4() -> AoiConfig:
    return grid_aoi(4, 4)


@pytest.fixture
def aoi_4x4_geometry(aoi_4x4):
    return box(*aoi_4x4.bbox)


# ---------------------------------------------------------------------------
# Synthetic 6x6 scene used by pipeline and CLI tests
#
#   reference: VV=0.20, VH=0.05 everywhere
#   flood:     columns 0-2 VV=0.05 (NDR -0.6); columns 3-5 unchanged
#   elevation: row 0 at 1500 m, rest at 800 m
#   land cover columns: 40, 80, 90, 10, 20, 30
#
# Expected flood: rows 1-5 x columns 0-2 -> 5 pixels each of 40, 80, 90
# ---------------------------------------------------------------------------

SYNTHETIC_ROWS = 6
SYNTHETIC_COLS = 6
FLOOD_WINDOW = TimeWindow(date(2022, 5, 1), date(2022, 5, 20))
REFERENCE_WINDOW = TimeWindow(date(2022, 3, 15), date(2022, 3, 30))
LAND_COVER_COLUMNS = [40, 80, 90, 10, 20, 30]


def _radar_scene(scene_id: str, when: datetime, vv: np.ndarray, vh: np.ndarray, mode: str = "IW"):
    scene = SceneInfo(
        scene_id=scene_id,
        datetime=when,
        bbox=(34.85, -0.25, 35.3, -0.05),
        instrument_mode=mode,
        polarizations=("VV", "VH"),
    )
    return scene, build_raster(np.stack([vv, vh]), name=scene_id, bands=["VV", "VH"])


def synthetic_scenes(flooded_columns: int = 3) -> dict[str, list]:
    shape = (SYNTHETIC_ROWS, SYNTHETIC_COLS)
    pre_vv = np.full(shape, 0.20)
    pre_vh = np.full(shape, 0.05)
    post_vv = pre_vv.copy()
    post_vv[:, :flooded_columns] = 0.05

    return {
        "sentinel-1-rtc": [
            _radar_scene("S1A_REF_1", datetime(2022, 3, 18, tzinfo=timezone.utc), pre_vv, pre_vh),
            _radar_scene("S1A_REF_2", datetime(2022, 3, 24, tzinfo=timezone.utc), pre_vv, pre_vh),
            # Wrong acquisition mode: must be filtered out
            _radar_scene(
                "S1A_REF_EW",
                datetime(2022, 3, 20, tzinfo=timezone.utc),
                np.full(shape, 9.0),
                np.full(shape, 9.0),
                mode="EW",
            ),
            _radar_scene("S1A_FLOOD_1", datetime(2022, 5, 8, tzinfo=timezone.utc), post_vv, pre_vh),
        ],
    }


def synthetic_statics() -> dict[str, Raster]:
    elevation = np.full((SYNTHETIC_ROWS, SYNTHETIC_COLS), 800.0)
    elevation[0, :] = 1500.0
    land_cover = np.tile(np.array(LAND_COVER_COLUMNS, dtype=np.uint8), (SYNTHETIC_ROWS, 1))
    return {
        "cop-dem-glo-30": build_raster(elevation, name="elevation"),
        "esa-worldcover": build_raster(land_cover, name="land_cover"),
    }


@pytest.fixture
def synthetic_provider() -> StaticRasterProvider:
    return StaticRasterProvider(scenes=synthetic_scenes(), statics=synthetic_statics())


@pytest.fixture
def synthetic_config() -> Config:
    """Config over the synthetic grid with smoothing disabled for exact counts."""
    return Config(
        aoi=grid_aoi(SYNTHETIC_ROWS, SYNTHETIC_COLS),
        flood_window=FLOOD_WINDOW,
        reference_window=REFERENCE_WINDOW,
        processing=ProcessingConfig(smoothing_radius_m=0.0, fetch_optical=False),
    )
