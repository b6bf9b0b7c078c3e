"""Configuration management for the flood mapping pipeline.

Configuration is immutable: every loader returns a new ``Config`` and
components receive it explicitly. There is no process-wide instance.
"""

import os
from dataclasses import dataclass, field, replace
from datetime import date, timedelta
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pyproj import CRS
from pyproj.exceptions import CRSError
from shapely.geometry import Polygon, box

from floodmap.errors import MalformedConfig


@dataclass(frozen=True)
class TimeWindow:
    """Start/end date pair used to filter acquisitions.

    The start date is included and the end date is excluded, so
    ``2022-05-01/2022-05-20`` covers acquisitions up to 2022-05-19.
    """

    start: date
    end: date

    @classmethod
    def parse(cls, value: str) -> "TimeWindow":
        """Parse ``YYYY-MM-DD/YYYY-MM-DD``."""
        try:
            start_str, end_str = value.split("/")
            return cls(date.fromisoformat(start_str.strip()), date.fromisoformat(end_str.strip()))
        except ValueError as e:
            raise MalformedConfig(f"Invalid time window {value!r}: {e}") from e

    def contains(self, day: date) -> bool:
        return self.start <= day < self.end

    def as_interval(self) -> str:
        """STAC datetime interval ending one second before ``end``."""
        last_day = self.end - timedelta(days=1)
        return f"{self.start.isoformat()}T00:00:00Z/{last_day.isoformat()}T23:59:59Z"

    def __str__(self) -> str:
        return f"{self.start.isoformat()}/{self.end.isoformat()}"


@dataclass(frozen=True)
class AoiConfig:
    """Area of interest. ``polygon`` takes precedence over ``bbox`` when set."""

    name: str = "nyando"
    bbox: tuple[float, float, float, float] = (34.85, -0.25, 35.3, -0.05)
    polygon: tuple[tuple[float, float], ...] | None = None
    crs: str = "EPSG:4326"

    @property
    def geometry(self) -> Polygon:
        if self.polygon:
            return Polygon(self.polygon)
        return box(*self.bbox)

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        return self.geometry.bounds


@dataclass(frozen=True)
class StacConfig:
    """STAC catalog configuration."""

    catalog_url: str = "https://planetarycomputer.microsoft.com/api/stac/v1"
    radar_collection: str = "sentinel-1-rtc"
    optical_collection: str = "sentinel-2-l2a"
    elevation_collection: str = "cop-dem-glo-30"
    elevation_asset: str = "data"
    landcover_collection: str = "esa-worldcover"
    landcover_asset: str = "map"
    max_items: int = 50


@dataclass(frozen=True)
class QueryConfig:
    """Scene quality predicates applied by the raster provider."""

    max_cloud_cover: float = 10.0
    instrument_mode: str = "IW"
    polarizations: tuple[str, ...] = ("VV", "VH")
    optical_bands: tuple[str, ...] = ("B04", "B03", "B02")


@dataclass(frozen=True)
class ProcessingConfig:
    """Detection thresholds. Empirical values tuned for one basin and event."""

    smoothing_radius_m: float = 30.0
    change_ratio_threshold: float = -0.25
    elevation_threshold_m: float = 1200.0
    sampling_scale_m: float = 10.0
    max_pixels: int = 1_000_000_000
    evaluation_timeout_s: float | None = None
    fetch_optical: bool = True


@dataclass(frozen=True)
class Config:
    """Main configuration container."""

    aoi: AoiConfig = field(default_factory=AoiConfig)
    flood_window: TimeWindow = TimeWindow(date(2022, 5, 1), date(2022, 5, 20))
    reference_window: TimeWindow = TimeWindow(date(2022, 3, 15), date(2022, 3, 30))
    stac: StacConfig = field(default_factory=StacConfig)
    query: QueryConfig = field(default_factory=QueryConfig)
    processing: ProcessingConfig = field(default_factory=ProcessingConfig)

    @classmethod
    def load(cls, config_dir: Path | None = None, env_file: Path | None = None) -> "Config":
        """Load configuration from YAML files and environment variables.

        Precedence (lowest first): defaults, ``processing.yaml``, environment.
        The result is validated before it is returned.
        """
        env_file = env_file or Path(__file__).parent.parent / ".env"
        if env_file.exists():
            load_dotenv(env_file)

        config = cls()

        if config_dir and config_dir.exists():
            processing_file = config_dir / "processing.yaml"
            if processing_file.exists():
                config = config._with_yaml(processing_file)

        config = config._with_env()
        config.validate()
        return config

    def _with_yaml(self, path: Path) -> "Config":
        """Return a copy with values from a YAML file applied."""
        with open(path) as f:
            data = yaml.safe_load(f)
        if not data:
            return self
        return self.apply_mapping(data)

    def apply_mapping(self, data: dict[str, Any]) -> "Config":
        """Return a copy with a nested mapping (YAML layout) applied."""
        config = self
        try:
            if "aoi" in data:
                aoi = data["aoi"]
                updates: dict[str, Any] = {}
                if "name" in aoi:
                    updates["name"] = str(aoi["name"])
                if "bbox" in aoi:
                    updates["bbox"] = _parse_bbox(aoi["bbox"])
                if "polygon" in aoi:
                    polygon = aoi["polygon"]
                    updates["polygon"] = None if polygon is None else tuple(
                        (float(x), float(y)) for x, y in polygon
                    )
                if "crs" in aoi:
                    updates["crs"] = str(aoi["crs"])
                config = replace(config, aoi=replace(config.aoi, **updates))

            if "flood_window" in data:
                config = replace(config, flood_window=_parse_window(data["flood_window"]))
            if "reference_window" in data:
                config = replace(config, reference_window=_parse_window(data["reference_window"]))

            if "stac" in data:
                stac = data["stac"]
                updates = {
                    key: stac[key]
                    for key in (
                        "catalog_url", "radar_collection", "optical_collection",
                        "elevation_collection", "elevation_asset",
                        "landcover_collection", "landcover_asset",
                    )
                    if key in stac
                }
                if "max_items" in stac:
                    updates["max_items"] = int(stac["max_items"])
                config = replace(config, stac=replace(config.stac, **updates))

            if "query" in data:
                query = data["query"]
                updates = {}
                if "max_cloud_cover" in query:
                    updates["max_cloud_cover"] = float(query["max_cloud_cover"])
                if "instrument_mode" in query:
                    updates["instrument_mode"] = str(query["instrument_mode"])
                if "polarizations" in query:
                    updates["polarizations"] = tuple(str(p) for p in query["polarizations"])
                if "optical_bands" in query:
                    updates["optical_bands"] = tuple(str(b) for b in query["optical_bands"])
                config = replace(config, query=replace(config.query, **updates))

            if "processing" in data:
                proc = data["processing"]
                updates = {}
                for key in (
                    "smoothing_radius_m", "change_ratio_threshold",
                    "elevation_threshold_m", "sampling_scale_m",
                ):
                    if key in proc:
                        updates[key] = float(proc[key])
                if "max_pixels" in proc:
                    updates["max_pixels"] = int(float(proc["max_pixels"]))
                if "evaluation_timeout_s" in proc:
                    timeout = proc["evaluation_timeout_s"]
                    updates["evaluation_timeout_s"] = None if timeout is None else float(timeout)
                if "fetch_optical" in proc:
                    updates["fetch_optical"] = bool(proc["fetch_optical"])
                config = replace(config, processing=replace(config.processing, **updates))
        except (TypeError, ValueError) as e:
            raise MalformedConfig(f"Invalid configuration value: {e}") from e

        return config

    def _with_env(self) -> "Config":
        """Return a copy with environment variable overrides applied."""
        data: dict[str, dict[str, Any]] = {}

        if bbox := os.getenv("FLOOD_AOI_BBOX"):
            data.setdefault("aoi", {})["bbox"] = bbox
        if window := os.getenv("FLOOD_WINDOW"):
            data["flood_window"] = window
        if window := os.getenv("REFERENCE_WINDOW"):
            data["reference_window"] = window

        if url := os.getenv("STAC_CATALOG_URL"):
            data.setdefault("stac", {})["catalog_url"] = url
        if cloud := os.getenv("MAX_CLOUD_COVER"):
            data.setdefault("query", {})["max_cloud_cover"] = cloud

        env_processing = {
            "SMOOTHING_RADIUS_M": "smoothing_radius_m",
            "CHANGE_RATIO_THRESHOLD": "change_ratio_threshold",
            "ELEVATION_THRESHOLD_M": "elevation_threshold_m",
            "SAMPLING_SCALE_M": "sampling_scale_m",
            "MAX_PIXELS": "max_pixels",
            "EVALUATION_TIMEOUT_S": "evaluation_timeout_s",
        }
        for env_name, key in env_processing.items():
            if value := os.getenv(env_name):
                data.setdefault("processing", {})[key] = value
        if fetch_optical := os.getenv("FETCH_OPTICAL"):
            data.setdefault("processing", {})["fetch_optical"] = (
                fetch_optical.lower() in ("true", "1", "yes")
            )

        return self.apply_mapping(data) if data else self

    def validate(self) -> None:
        """Fail fast on an invalid AOI, window, or threshold."""
        try:
            CRS.from_user_input(self.aoi.crs)
        except CRSError as e:
            raise MalformedConfig(f"Invalid AOI CRS {self.aoi.crs!r}: {e}") from e

        if not self.aoi.polygon:
            min_x, min_y, max_x, max_y = self.aoi.bbox
            if min_x >= max_x or min_y >= max_y:
                raise MalformedConfig(f"Degenerate AOI bounding box: {self.aoi.bbox}")
        else:
            if len(self.aoi.polygon) < 3:
                raise MalformedConfig("AOI polygon needs at least three vertices")

        geometry = self.aoi.geometry
        if geometry.is_empty or not geometry.is_valid or geometry.area <= 0:
            raise MalformedConfig(f"AOI geometry is not a valid polygon: {geometry.wkt}")

        for name, window in (
            ("flood_window", self.flood_window),
            ("reference_window", self.reference_window),
        ):
            if window.start >= window.end:
                raise MalformedConfig(f"{name} must end after it starts: {window}")

        if not self.query.polarizations:
            raise MalformedConfig("At least one polarization is required")
        if not 0 <= self.query.max_cloud_cover <= 100:
            raise MalformedConfig(
                f"max_cloud_cover must be within [0, 100], got {self.query.max_cloud_cover}"
            )

        proc = self.processing
        if proc.smoothing_radius_m < 0:
            raise MalformedConfig(f"smoothing_radius_m must be >= 0, got {proc.smoothing_radius_m}")
        if not -1 <= proc.change_ratio_threshold <= 1:
            raise MalformedConfig(
                f"change_ratio_threshold must be within [-1, 1], got {proc.change_ratio_threshold}"
            )
        if proc.sampling_scale_m <= 0:
            raise MalformedConfig(f"sampling_scale_m must be > 0, got {proc.sampling_scale_m}")
        if proc.max_pixels <= 0:
            raise MalformedConfig(f"max_pixels must be > 0, got {proc.max_pixels}")
        if proc.evaluation_timeout_s is not None and proc.evaluation_timeout_s <= 0:
            raise MalformedConfig(
                f"evaluation_timeout_s must be > 0, got {proc.evaluation_timeout_s}"
            )

    def to_dict(self) -> dict[str, Any]:
        """Plain mapping in the YAML layout."""
        return {
            "aoi": {
                "name": self.aoi.name,
                "bbox": list(self.aoi.bbox),
                "polygon": [list(p) for p in self.aoi.polygon] if self.aoi.polygon else None,
                "crs": self.aoi.crs,
            },
            "flood_window": str(self.flood_window),
            "reference_window": str(self.reference_window),
            "stac": {
                "catalog_url": self.stac.catalog_url,
                "radar_collection": self.stac.radar_collection,
                "optical_collection": self.stac.optical_collection,
                "elevation_collection": self.stac.elevation_collection,
                "elevation_asset": self.stac.elevation_asset,
                "landcover_collection": self.stac.landcover_collection,
                "landcover_asset": self.stac.landcover_asset,
                "max_items": self.stac.max_items,
            },
            "query": {
                "max_cloud_cover": self.query.max_cloud_cover,
                "instrument_mode": self.query.instrument_mode,
                "polarizations": list(self.query.polarizations),
                "optical_bands": list(self.query.optical_bands),
            },
            "processing": {
                "smoothing_radius_m": self.processing.smoothing_radius_m,
                "change_ratio_threshold": self.processing.change_ratio_threshold,
                "elevation_threshold_m": self.processing.elevation_threshold_m,
                "sampling_scale_m": self.processing.sampling_scale_m,
                "max_pixels": self.processing.max_pixels,
                "evaluation_timeout_s": self.processing.evaluation_timeout_s,
                "fetch_optical": self.processing.fetch_optical,
            },
        }


def _parse_bbox(value: Any) -> tuple[float, float, float, float]:
    """Accept a 4-item list or a comma-separated string."""
    if isinstance(value, str):
        value = value.split(",")
    bbox = tuple(float(v) for v in value)
    if len(bbox) != 4:
        raise ValueError(f"bbox needs 4 values, got {len(bbox)}")
    return bbox


def _parse_window(value: Any) -> TimeWindow:
    """Accept ``start/end`` strings or ``{start, end}`` mappings."""
    if isinstance(value, TimeWindow):
        return value
    if isinstance(value, dict):
        try:
            return TimeWindow(_as_date(value["start"]), _as_date(value["end"]))
        except KeyError as e:
            raise MalformedConfig(f"Time window missing {e}") from e
    return TimeWindow.parse(str(value))


def _as_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError as e:
        raise MalformedConfig(f"Invalid date {value!r}") from e


def load_config(config_dir: Path | None = None) -> Config:
    """Load a fresh configuration, defaulting to the bundled config directory."""
    if config_dir is None:
        config_dir = Path(__file__).parent.parent / "config"
    return Config.load(config_dir)
