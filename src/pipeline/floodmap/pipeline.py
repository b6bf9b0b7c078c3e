"""Flood extent pipeline with a single forcing evaluation step.

``FloodPipeline.build()`` only validates configuration and returns a
``DeferredFloodAnalysis``. Nothing is fetched or computed until
``evaluate()`` is called, so provider errors (``DataUnavailable``) and
geometry errors surface there, together with ``ResourceLimitExceeded`` and
``Cancelled``/``Timeout``.
"""

import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from typing import Any

import structlog
from rasterio.enums import Resampling

from floodmap.config import Config
from floodmap.errors import Cancelled, DataUnavailable, Timeout
from floodmap.raster.change import ChangeResult, detect_change
from floodmap.raster.composite import to_reflectance
from floodmap.raster.flood_mask import ElevationMaskCache, build_flood_mask, elevation_mask
from floodmap.raster.landcover import flooded_land_cover
from floodmap.raster.model import Raster
from floodmap.raster.speckle import smooth
from floodmap.raster.zonal import ClassHistogram, zonal_histogram
from floodmap.report.builder import AreaReport, NoFloodDetected, build_report
from floodmap.stac.provider import QualityPredicates, RasterDataProvider, StacRasterProvider

logger = structlog.get_logger()


@dataclass(frozen=True)
class FloodAnalysisResult:
    """Everything materialised by one evaluation."""

    histogram: ClassHistogram
    report: AreaReport | NoFloodDetected
    flood_mask: Raster
    change: ChangeResult
    rgb_composite: Raster | None = None
    stats: dict[str, Any] = field(default_factory=dict)

    @property
    def no_flood_detected(self) -> bool:
        return isinstance(self.report, NoFloodDetected)


class CancelToken:
    """Cooperative cancellation flag checked between stages."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def check(self, stage: str) -> None:
        if self._event.is_set():
            raise Cancelled(f"Evaluation cancelled before {stage}")


class DeferredFloodAnalysis:
    """Unevaluated flood analysis for one AOI and window pair."""

    def __init__(
        self,
        config: Config,
        provider: RasterDataProvider,
        elevation_cache: ElevationMaskCache | None = None,
    ):
        self.config = config
        self.provider = provider
        self.elevation_cache = elevation_cache
        self._token: CancelToken | None = None
        self._lock = threading.Lock()

    def cancel(self) -> None:
        """Cancel a running evaluation; it raises ``Cancelled`` at the next stage."""
        with self._lock:
            if self._token is not None:
                self._token.cancel()

    def evaluate(self, timeout: float | None = None) -> FloodAnalysisResult:
        """Force the whole analysis.

        The work runs on a daemon thread. After a timeout the current stage
        (typically a download) runs to completion in the background and the
        remaining stages are skipped, but it never holds up interpreter exit.

        Args:
            timeout: Seconds to wait. Defaults to the configured
                ``evaluation_timeout_s``; None waits indefinitely.

        Returns:
            FloodAnalysisResult with histogram and report.

        Raises:
            DataUnavailable: A provider query matched no scenes.
            ResourceLimitExceeded: The aggregation exceeds the pixel budget.
            Timeout: ``timeout`` elapsed. No partial results are kept.
            Cancelled: ``cancel()`` was called.
        """
        if timeout is None:
            timeout = self.config.processing.evaluation_timeout_s

        token = CancelToken()
        with self._lock:
            self._token = token

        future: Future = Future()

        def work() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(self._run(token))
            except BaseException as e:
                future.set_exception(e)

        threading.Thread(target=work, name="floodmap-eval", daemon=True).start()
        try:
            return future.result(timeout=timeout)
        except FuturesTimeoutError:
            token.cancel()
            logger.warning("Evaluation timed out", timeout_s=timeout)
            raise Timeout(timeout) from None
        finally:
            with self._lock:
                self._token = None

    def _radar_predicates(self) -> QualityPredicates:
        query = self.config.query
        return QualityPredicates(
            bands=tuple(query.polarizations),
            instrument_mode=query.instrument_mode,
            polarizations=tuple(query.polarizations),
        )

    def _optical_predicates(self) -> QualityPredicates:
        query = self.config.query
        return QualityPredicates(
            bands=tuple(query.optical_bands),
            max_cloud_cover=query.max_cloud_cover,
        )

    def _load_lowlands(self) -> Raster:
        config = self.config
        product_id = config.stac.elevation_collection
        threshold = config.processing.elevation_threshold_m

        def load_elevation() -> Raster:
            return self.provider.fetch_static(product_id, config.aoi)

        if self.elevation_cache is None:
            return elevation_mask(load_elevation(), threshold)
        return self.elevation_cache.get_or_build(
            config.aoi.geometry, config.aoi.crs, product_id, threshold, load_elevation
        )

    def _fetch_rgb(self) -> Raster | None:
        config = self.config
        try:
            optical = self.provider.fetch_composite(
                config.stac.optical_collection,
                config.aoi,
                config.flood_window,
                self._optical_predicates(),
            )
        except DataUnavailable as e:
            logger.warning("Optical composite unavailable, continuing without it", error=str(e))
            return None
        return to_reflectance(optical)

    def _run(self, token: CancelToken) -> FloodAnalysisResult:
        config = self.config
        aoi = config.aoi
        proc = config.processing
        radar = config.stac.radar_collection

        logger.info(
            "Evaluating flood analysis",
            aoi=aoi.name,
            flood_window=str(config.flood_window),
            reference_window=str(config.reference_window),
        )

        token.check("reference composite")
        pre = self.provider.fetch_composite(radar, aoi, config.reference_window, self._radar_predicates())
        token.check("flood composite")
        post = self.provider.fetch_composite(radar, aoi, config.flood_window, self._radar_predicates())

        rgb = None
        if proc.fetch_optical:
            token.check("optical composite")
            rgb = self._fetch_rgb()

        token.check("speckle filter")
        pre_smoothed = smooth(pre, proc.smoothing_radius_m)
        post_smoothed = smooth(post.reproject_match(pre), proc.smoothing_radius_m)

        token.check("change detection")
        change = detect_change(pre_smoothed, post_smoothed, config.query.polarizations)

        token.check("elevation mask")
        lowlands = self._load_lowlands().reproject_match(change.combined, Resampling.nearest)

        token.check("flood mask")
        flood_mask = build_flood_mask(
            change.combined,
            lowlands,
            aoi.geometry,
            aoi.crs,
            ratio_threshold=proc.change_ratio_threshold,
        )

        token.check("land cover overlay")
        land_cover = self.provider.fetch_static(config.stac.landcover_collection, aoi)
        flooded = flooded_land_cover(
            land_cover.reproject_match(flood_mask, Resampling.nearest), flood_mask
        )

        token.check("zonal histogram")
        histogram = zonal_histogram(
            flooded,
            aoi.geometry,
            aoi.crs,
            scale_m=proc.sampling_scale_m,
            max_pixels=proc.max_pixels,
        )
        token.check("report")
        report = build_report(histogram)

        stats = dict(change.stats)
        stats.update(
            flooded_pixels=flood_mask.valid_count(),
            lowland_pixels=lowlands.valid_count(),
            histogram_pixels=histogram.total_pixels,
        )
        logger.info(
            "Flood analysis complete",
            flooded_pixels=stats["flooded_pixels"],
            classes=len(histogram.counts),
            no_flood=isinstance(report, NoFloodDetected),
        )
        return FloodAnalysisResult(
            histogram=histogram,
            report=report,
            flood_mask=flood_mask,
            change=change,
            rgb_composite=rgb,
            stats=stats,
        )


class FloodPipeline:
    """Entry point wiring configuration, provider and elevation cache."""

    def __init__(
        self,
        config: Config,
        provider: RasterDataProvider | None = None,
        elevation_cache: ElevationMaskCache | None = None,
    ):
        self.config = config
        self.provider = provider or StacRasterProvider(stac_config=config.stac)
        self.elevation_cache = elevation_cache

    def build(self) -> DeferredFloodAnalysis:
        """Validate configuration and return the unevaluated analysis.

        Raises:
            MalformedConfig: Before any provider call.
        """
        self.config.validate()
        return DeferredFloodAnalysis(self.config, self.provider, self.elevation_cache)

    def run(self, timeout: float | None = None) -> FloodAnalysisResult:
        """Build and evaluate in one call."""
        return self.build().evaluate(timeout=timeout)
