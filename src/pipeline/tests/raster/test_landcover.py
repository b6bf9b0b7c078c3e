"""Tests for land cover class resolution and the flood overlay."""

import numpy as np
import pytest

from floodmap.raster.landcover import (
    UNKNOWN_CLASS_COLOR,
    WORLDCOVER_CLASSES,
    class_color,
    flooded_land_cover,
    resolve_class_name,
)


class TestResolveClassName:

    @pytest.mark.parametrize(
        "code, expected",
        [
            (10, "Tree Cover"),
            (20, "Shrubland"),
            (30, "Grassland"),
            (40, "Cropland"),
            (50, "Built-up"),
            (60, "Bare/Sparse Veg"),
            (80, "Water"),
            (90, "Wetlands"),
            (95, "Mangrove"),
            (100, "Moss/Lichen"),
        ],
    )
    def test_known_codes(self, code, expected):
        assert resolve_class_name(code) == expected

    def test_unknown_code_falls_back(self):
        assert resolve_class_name(999) == "Class 999"

    def test_numpy_integer_accepted(self):
        assert resolve_class_name(np.int64(40)) == "Cropland"

    def test_every_class_has_a_color(self):
        for code in WORLDCOVER_CLASSES:
            assert class_color(code) != UNKNOWN_CLASS_COLOR

    def test_unknown_color(self):
        assert class_color(999) == UNKNOWN_CLASS_COLOR


class TestFloodedLandCover:

    def test_restricted_to_flood_mask(self, make_raster):
        land_cover = make_raster(np.array([[40, 80], [90, 10]], dtype=np.uint8))
        flood = np.array([[True, False], [True, False]])
        flood_mask = make_raster(flood, valid=flood)

        result = flooded_land_cover(land_cover, flood_mask)

        assert result.name == "flooded_land_cover"
        assert sorted(result.valid_values().tolist()) == [40, 90]

    def test_land_cover_nodata_excluded(self, make_raster):
        land_cover = make_raster(np.array([[40.0, np.nan]]))
        flood = np.array([[True, True]])
        result = flooded_land_cover(land_cover, make_raster(flood, valid=flood))
        assert result.valid_count() == 1

    def test_grid_mismatch_raises(self, make_raster):
        flood = np.ones((3, 3), dtype=bool)
        with pytest.raises(ValueError, match="grids differ"):
            flooded_land_cover(make_raster(np.ones((2, 2))), make_raster(flood, valid=flood))
