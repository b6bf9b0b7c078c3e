"""Raster data providers: composites and static layers clipped to the AOI."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

import structlog

from floodmap.config import AoiConfig, StacConfig, TimeWindow
from floodmap.errors import DataUnavailable
from floodmap.geo_utils import reproject_geometry
from floodmap.raster.composite import median_composite
from floodmap.raster.download import load_raster, mosaic
from floodmap.raster.model import Raster, stack_bands, union_grid
from floodmap.stac.client import StacClient

logger = structlog.get_logger()


@dataclass(frozen=True)
class QualityPredicates:
    """Scene filters applied before compositing."""

    bands: tuple[str, ...]
    max_cloud_cover: float | None = None
    instrument_mode: str | None = None
    polarizations: tuple[str, ...] = ()

    def matches(self, scene: "SceneInfo") -> bool:
        if self.max_cloud_cover is not None:
            if scene.cloud_cover is None or scene.cloud_cover >= self.max_cloud_cover:
                return False
        if self.instrument_mode is not None and scene.instrument_mode != self.instrument_mode:
            return False
        return all(pol in scene.polarizations for pol in self.polarizations)

    def to_stac_query(self) -> dict[str, Any]:
        """Server-side filters; polarization lists are checked client-side."""
        query: dict[str, Any] = {}
        if self.max_cloud_cover is not None:
            query["eo:cloud_cover"] = {"lt": self.max_cloud_cover}
        if self.instrument_mode is not None:
            query["sar:instrument_mode"] = {"eq": self.instrument_mode}
        return query


@dataclass
class SceneInfo:
    """Information about a satellite imagery scene."""

    scene_id: str
    datetime: datetime
    bbox: tuple[float, float, float, float]
    assets: dict[str, dict[str, str]] = field(default_factory=dict)
    cloud_cover: float | None = None
    instrument_mode: str | None = None
    polarizations: tuple[str, ...] = ()
    platform: str | None = None

    @classmethod
    def from_item(cls, item: Any) -> "SceneInfo":
        """Create SceneInfo from a pystac Item."""
        props = item.properties
        dt_str = props.get("datetime") or props.get("start_datetime") or ""
        dt = datetime.fromisoformat(dt_str.replace("Z", "+00:00")) if dt_str else datetime.min

        return cls(
            scene_id=item.id,
            datetime=dt,
            bbox=tuple(item.bbox or (0, 0, 0, 0)),
            assets={
                key: {"href": asset.href, "type": asset.media_type or ""}
                for key, asset in item.assets.items()
            },
            cloud_cover=props.get("eo:cloud_cover"),
            instrument_mode=props.get("sar:instrument_mode"),
            polarizations=tuple(props.get("sar:polarizations") or ()),
            platform=props.get("platform"),
        )

    def get_band_url(self, band: str) -> str | None:
        """Get the URL for a band, accepting lowercase asset keys (``vv``)."""
        asset = self.assets.get(band) or self.assets.get(band.lower())
        return asset.get("href") if asset else None

    def in_window(self, window: TimeWindow) -> bool:
        return window.contains(self.datetime.date())


class RasterDataProvider(Protocol):
    """Supplies AOI-clipped composites and static layers."""

    def fetch_composite(
        self,
        product_id: str,
        aoi: AoiConfig,
        window: TimeWindow,
        predicates: QualityPredicates,
    ) -> Raster:
        """Median composite of qualifying scenes. Raises DataUnavailable if none qualify."""
        ...

    def fetch_static(self, product_id: str, aoi: AoiConfig) -> Raster:
        """Time-invariant single-band layer (elevation, land cover)."""
        ...


def _composite_scenes(
    product_id: str,
    scenes: list[Raster],
    aoi: AoiConfig,
) -> Raster:
    """Align scenes to a grid covering all footprints, median them, and clip to the AOI."""
    crs, transform, shape = union_grid(scenes)
    aligned = [s.reproject_to_grid(crs, transform, shape) for s in scenes]
    composite = median_composite(aligned, name=product_id)
    return composite.clip_to_aoi(aoi.geometry, aoi.crs)


class StaticRasterProvider:
    """In-memory provider over pre-loaded scenes.

    Applies the same window and predicate semantics as the catalog provider.
    Useful for offline runs and tests.
    """

    def __init__(
        self,
        scenes: dict[str, list[tuple[SceneInfo, Raster]]] | None = None,
        statics: dict[str, Raster] | None = None,
    ):
        self.scenes = scenes or {}
        self.statics = statics or {}

    def fetch_composite(
        self,
        product_id: str,
        aoi: AoiConfig,
        window: TimeWindow,
        predicates: QualityPredicates,
    ) -> Raster:
        candidates = [
            raster
            for scene, raster in self.scenes.get(product_id, [])
            if scene.in_window(window) and predicates.matches(scene)
        ]
        if not candidates:
            raise DataUnavailable(product_id, f"no scenes match {window} and {predicates}")

        selected = [
            stack_bands({b: r.band(b) for b in predicates.bands}, name=product_id)
            for r in candidates
        ]
        logger.info("Compositing scenes", product_id=product_id, window=str(window), scenes=len(selected))
        return _composite_scenes(product_id, selected, aoi)

    def fetch_static(self, product_id: str, aoi: AoiConfig) -> Raster:
        if product_id not in self.statics:
            raise DataUnavailable(product_id, "static layer not loaded")
        return self.statics[product_id].clip_to_aoi(aoi.geometry, aoi.crs)


class StacRasterProvider:
    """Provider backed by a STAC catalog (Planetary Computer by default)."""

    def __init__(self, client: StacClient | None = None, stac_config: StacConfig | None = None):
        self.stac_config = stac_config or (client.config if client else StacConfig())
        self.client = client or StacClient(self.stac_config)
        self.static_assets = {
            self.stac_config.elevation_collection: self.stac_config.elevation_asset,
            self.stac_config.landcover_collection: self.stac_config.landcover_asset,
        }

    @staticmethod
    def _wgs84_bbox(aoi: AoiConfig) -> tuple[float, float, float, float]:
        return reproject_geometry(aoi.geometry, aoi.crs, "EPSG:4326").bounds

    def fetch_composite(
        self,
        product_id: str,
        aoi: AoiConfig,
        window: TimeWindow,
        predicates: QualityPredicates,
    ) -> Raster:
        bbox = self._wgs84_bbox(aoi)
        items = self.client.search(
            collection=product_id,
            bbox=bbox,
            datetime=window.as_interval(),
            query=predicates.to_stac_query() or None,
        )
        scenes = [SceneInfo.from_item(item) for item in items]
        scenes = [s for s in scenes if predicates.matches(s)]
        if not scenes:
            raise DataUnavailable(product_id, f"no scenes match {window} and {predicates}")

        loaded = []
        for scene in scenes:
            bands = {}
            for band in predicates.bands:
                url = scene.get_band_url(band)
                if url is None:
                    logger.warning("Band not available", band=band, scene_id=scene.scene_id)
                    break
                bands[band] = load_raster(url, bbox, name=band)
            else:
                reference = next(iter(bands.values()))
                aligned = {name: r.reproject_match(reference) for name, r in bands.items()}
                loaded.append(stack_bands(aligned, name=scene.scene_id))

        if not loaded:
            raise DataUnavailable(product_id, f"scenes lack bands {list(predicates.bands)}")

        logger.info(
            "Compositing scenes",
            product_id=product_id,
            window=str(window),
            scenes=len(loaded),
        )
        return _composite_scenes(product_id, loaded, aoi)

    def fetch_static(self, product_id: str, aoi: AoiConfig) -> Raster:
        bbox = self._wgs84_bbox(aoi)
        asset_key = self.static_assets.get(product_id, "data")
        items = self.client.search(collection=product_id, bbox=bbox)
        if not items:
            raise DataUnavailable(product_id, f"no tiles intersect {bbox}")

        tiles = []
        for item in items:
            url = SceneInfo.from_item(item).get_band_url(asset_key)
            if url is None:
                logger.warning("Asset not available", asset=asset_key, item_id=item.id)
                continue
            tiles.append(load_raster(url, bbox, name=product_id))
        if not tiles:
            raise DataUnavailable(product_id, f"no {asset_key!r} asset in {len(items)} items")

        logger.info("Static layer loaded", product_id=product_id, tiles=len(tiles))
        return mosaic(tiles, name=product_id).clip_to_aoi(aoi.geometry, aoi.crs)

