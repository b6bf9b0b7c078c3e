"""Command-line interface for the flood mapping pipeline."""

import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any

import click
import structlog
import yaml

from floodmap.config import Config, load_config
from floodmap.errors import Cancelled, FloodMapError, MalformedConfig
from floodmap.pipeline import FloodPipeline
from floodmap.raster.landcover import WORLDCOVER_CLASSES
from floodmap.report.sink import ConsoleSink, JsonSink
from floodmap.stac.provider import StacRasterProvider

# Configure structlog for CLI output
logging.basicConfig(format="%(message)s", level=logging.INFO)

structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(colors=True),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = structlog.get_logger()


@click.group()
@click.option("--config-dir", type=click.Path(exists=True, path_type=Path), help="Configuration directory")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.pass_context
def cli(ctx: click.Context, config_dir: Path | None, verbose: bool) -> None:
    """SAR flood extent mapping pipeline."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        ctx.obj["config"] = load_config(config_dir)
    except MalformedConfig as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)

    if verbose:
        click.echo("Configuration loaded")


@cli.command()
@click.option("--bbox", help="AOI bounding box (min_x,min_y,max_x,max_y)")
@click.option("--flood-window", help="Flood window (YYYY-MM-DD/YYYY-MM-DD)")
@click.option("--reference-window", help="Reference window (YYYY-MM-DD/YYYY-MM-DD)")
@click.option("--ratio-threshold", type=float, help="Change ratio threshold (e.g., -0.25)")
@click.option("--elevation-threshold", type=float, help="Elevation threshold in metres")
@click.option("--smoothing-radius", type=float, help="Speckle filter radius in metres")
@click.option("--scale", type=float, help="Histogram sampling scale in metres")
@click.option("--max-pixels", type=float, help="Pixel budget for the histogram")
@click.option("--timeout", type=float, help="Evaluation timeout in seconds")
@click.option("--skip-optical", is_flag=True, help="Skip the Sentinel-2 context composite")
@click.option("--output", "-o", type=click.Path(path_type=Path), help="Output JSON file")
@click.option(
    "--ratio-raster",
    type=click.Path(path_type=Path),
    help="Also write the combined change ratio as a GeoTIFF",
)
@click.pass_context
def run(
    ctx: click.Context,
    bbox: str | None,
    flood_window: str | None,
    reference_window: str | None,
    ratio_threshold: float | None,
    elevation_threshold: float | None,
    smoothing_radius: float | None,
    scale: float | None,
    max_pixels: float | None,
    timeout: float | None,
    skip_optical: bool,
    output: Path | None,
    ratio_raster: Path | None,
) -> None:
    """Detect flood extent and report flooded area per land cover class."""
    config: Config = ctx.obj["config"]

    overrides: dict[str, Any] = {}
    if bbox:
        overrides["aoi"] = {"bbox": bbox}
    if flood_window:
        overrides["flood_window"] = flood_window
    if reference_window:
        overrides["reference_window"] = reference_window

    processing: dict[str, Any] = {}
    if ratio_threshold is not None:
        processing["change_ratio_threshold"] = ratio_threshold
    if elevation_threshold is not None:
        processing["elevation_threshold_m"] = elevation_threshold
    if smoothing_radius is not None:
        processing["smoothing_radius_m"] = smoothing_radius
    if scale is not None:
        processing["sampling_scale_m"] = scale
    if max_pixels is not None:
        processing["max_pixels"] = max_pixels
    if timeout is not None:
        processing["evaluation_timeout_s"] = timeout
    if skip_optical:
        processing["fetch_optical"] = False
    if processing:
        overrides["processing"] = processing

    try:
        if overrides:
            config = _apply_overrides(config, overrides)

        click.echo(f"Processing AOI: {config.aoi.name} {config.aoi.bounds}")
        click.echo(f"  Reference window: {config.reference_window}")
        click.echo(f"  Flood window:     {config.flood_window}")

        provider = StacRasterProvider(stac_config=config.stac)
        analysis = FloodPipeline(config, provider=provider).build()
        result = analysis.evaluate()

        click.echo("")
        ConsoleSink().emit(result.report, result.histogram)
        if output:
            JsonSink(output).emit(result.report, result.histogram)
            click.echo(f"\nResults saved to: {output}")
        if ratio_raster:
            result.change.save_ratio_raster(ratio_raster)
            click.echo(f"Change ratio raster saved to: {ratio_raster}")

    except Cancelled as e:
        click.echo(f"Cancelled: {e}", err=True)
        sys.exit(2)
    except FloodMapError as e:
        logger.error("Flood analysis failed", error_type=type(e).__name__, error=str(e))
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def _apply_overrides(config: Config, overrides: dict[str, Any]) -> Config:
    """Apply command-line overrides and re-validate."""
    if "aoi" in overrides:
        # A bbox on the command line replaces any configured polygon
        config = replace(config, aoi=replace(config.aoi, polygon=None))
    config = config.apply_mapping(overrides)
    config.validate()
    return config


@cli.command("show-config")
@click.pass_context
def show_config(ctx: click.Context) -> None:
    """Print the effective configuration as YAML."""
    config: Config = ctx.obj["config"]
    click.echo(yaml.safe_dump(config.to_dict(), sort_keys=False))


@cli.command()
def classes() -> None:
    """List land cover class codes and labels."""
    for code, label in WORLDCOVER_CLASSES.items():
        click.echo(f"{code:>4}  {label}")


if __name__ == "__main__":
    cli()
