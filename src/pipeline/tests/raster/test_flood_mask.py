"""Tests for elevation masking, flood mask construction and the elevation cache."""

import numpy as np
import pytest
from shapely.geometry import box

from floodmap.raster.change import combine_min
from floodmap.raster.flood_mask import ElevationMaskCache, build_flood_mask, elevation_mask

# ---------------------------------------------------------------------------
# elevation_mask
# ---------------------------------------------------------------------------

class TestElevationMask:

    def test_strictly_below_threshold(self, make_raster):
        elevation = make_raster(np.array([[800.0, 1199.9], [1200.0, 1500.0]]))
        mask = elevation_mask(elevation, 1200.0)
        np.testing.assert_array_equal(mask.valid.values, [[True, True], [False, False]])
        assert mask.name == "lowlands"

    def test_represented_pixels_are_true(self, make_raster):
        mask = elevation_mask(make_raster(np.array([[800.0, 1500.0]])), 1200.0)
        assert mask.valid_values().tolist() == [True]

    def test_nodata_excluded(self, make_raster):
        mask = elevation_mask(make_raster(np.array([[np.nan, 500.0]])), 1200.0)
        np.testing.assert_array_equal(mask.valid.values, [[False, True]])

    def test_monotonic_in_threshold(self, make_raster):
        rng = np.random.default_rng(3)
        elevation = make_raster(rng.uniform(0, 3000, (10, 10)))
        thresholds = [2500.0, 1200.0, 600.0, 100.0]
        masks = [elevation_mask(elevation, t).valid.values for t in thresholds]
        for higher, lower in zip(masks, masks[1:]):
            assert not (lower & ~higher).any()


# ---------------------------------------------------------------------------
# build_flood_mask
# ---------------------------------------------------------------------------

class TestBuildFloodMask:

    def test_four_by_four_scenario(self, make_raster, aoi_4x4, aoi_4x4_geometry):
        vv = np.zeros((4, 4))
        vh = np.zeros((4, 4))
        vv[0, 0], vh[0, 0] = -0.4, -0.1
        vv[1, 1], vh[1, 1] = -0.1, -0.05
        combined = combine_min([make_raster(vv), make_raster(vh)])
        lowlands = elevation_mask(make_raster(np.full((4, 4), 800.0)), 1200.0)

        mask = build_flood_mask(combined, lowlands, aoi_4x4_geometry, aoi_4x4.crs, -0.25)

        assert mask.valid.values[0, 0]
        assert not mask.valid.values[1, 1]
        assert mask.valid_count() == 1

    def test_threshold_is_strict(self, make_raster, aoi_4x4, aoi_4x4_geometry):
        ratio = make_raster(np.full((4, 4), -0.25))
        lowlands = elevation_mask(make_raster(np.full((4, 4), 0.0)), 1200.0)
        mask = build_flood_mask(ratio, lowlands, aoi_4x4_geometry, aoi_4x4.crs, -0.25)
        assert mask.is_empty()

    def test_subset_of_elevation_mask(self, make_raster, aoi_4x4, aoi_4x4_geometry):
        rng = np.random.default_rng(11)
        ratio = make_raster(rng.uniform(-1, 1, (4, 4)))
        lowlands = elevation_mask(make_raster(rng.uniform(0, 2400, (4, 4))), 1200.0)
        mask = build_flood_mask(ratio, lowlands, aoi_4x4_geometry, aoi_4x4.crs)
        assert not (mask.valid.values & ~lowlands.valid.values).any()

    def test_undefined_ratio_fails_closed(self, make_raster, aoi_4x4, aoi_4x4_geometry):
        ratio = make_raster(np.full((4, 4), np.nan))
        lowlands = elevation_mask(make_raster(np.full((4, 4), 0.0)), 1200.0)
        mask = build_flood_mask(ratio, lowlands, aoi_4x4_geometry, aoi_4x4.crs)
        assert mask.is_empty()

    def test_restricted_to_aoi(self, make_raster, aoi_4x4):
        min_x, min_y, max_x, max_y = aoi_4x4.bbox
        left_half = box(min_x, min_y, (min_x + max_x) / 2, max_y)
        ratio = make_raster(np.full((4, 4), -0.5))
        lowlands = elevation_mask(make_raster(np.full((4, 4), 0.0)), 1200.0)

        mask = build_flood_mask(ratio, lowlands, left_half, aoi_4x4.crs)

        assert mask.valid.values[:, :2].all()
        assert not mask.valid.values[:, 2:].any()

    def test_aoi_in_geographic_crs(self, make_raster):
        # Geographic AOI east of the raster footprint
        ratio = make_raster(np.full((4, 4), -0.5))
        lowlands = elevation_mask(make_raster(np.full((4, 4), 0.0)), 1200.0)
        mask = build_flood_mask(ratio, lowlands, box(34.0, -1.0, 34.1, -0.9), "EPSG:4326")
        assert mask.is_empty()

    def test_empty_upstream_yields_empty_mask(self, make_raster, aoi_4x4, aoi_4x4_geometry):
        ratio = make_raster(np.full((4, 4), -0.5))
        lowlands = elevation_mask(make_raster(np.full((4, 4), 5000.0)), 1200.0)
        mask = build_flood_mask(ratio, lowlands, aoi_4x4_geometry, aoi_4x4.crs)
        assert mask.is_empty()
        assert mask.name == "flood"

    def test_grid_mismatch_raises(self, make_raster, aoi_4x4, aoi_4x4_geometry):
        ratio = make_raster(np.full((4, 4), -0.5))
        lowlands = elevation_mask(make_raster(np.full((3, 3), 0.0)), 1200.0)
        with pytest.raises(ValueError, match="grids differ"):
            build_flood_mask(ratio, lowlands, aoi_4x4_geometry, aoi_4x4.crs)


# ---------------------------------------------------------------------------
# ElevationMaskCache
# ---------------------------------------------------------------------------

class TestElevationMaskCache:

    def test_loader_called_once_per_key(self, make_raster, aoi_4x4, aoi_4x4_geometry):
        calls = []

        def load():
            calls.append(1)
            return make_raster(np.full((4, 4), 800.0))

        cache = ElevationMaskCache()
        first = cache.get_or_build(aoi_4x4_geometry, aoi_4x4.crs, "cop-dem-glo-30", 1200.0, load)
        second = cache.get_or_build(aoi_4x4_geometry, aoi_4x4.crs, "cop-dem-glo-30", 1200.0, load)

        assert first is second
        assert len(calls) == 1
        assert len(cache) == 1

    def test_threshold_is_part_of_key(self, make_raster, aoi_4x4, aoi_4x4_geometry):
        cache = ElevationMaskCache()
        load = lambda: make_raster(np.array([[500.0, 1000.0]]))  # noqa: E731
        low = cache.get_or_build(aoi_4x4_geometry, aoi_4x4.crs, "dem", 600.0, load)
        high = cache.get_or_build(aoi_4x4_geometry, aoi_4x4.crs, "dem", 1200.0, load)

        assert low.valid_count() == 1
        assert high.valid_count() == 2
        assert len(cache) == 2

    def test_clear(self, make_raster, aoi_4x4, aoi_4x4_geometry):
        cache = ElevationMaskCache()
        cache.get_or_build(
            aoi_4x4_geometry, aoi_4x4.crs, "dem", 1200.0, lambda: make_raster(np.ones((2, 2)))
        )
        cache.clear()
        assert len(cache) == 0
