"""Backscatter change detection between reference and flood composites."""

from dataclasses import dataclass, field
from pathlib import Path

import numpy as np
import structlog

from floodmap.raster.model import Raster

logger = structlog.get_logger()


@dataclass(frozen=True)
class ChangeResult:
    """Per-polarization change ratios and their pixel-wise minimum."""

    ratios: dict[str, Raster]
    combined: Raster
    stats: dict[str, float] = field(default_factory=dict)

    def save_ratio_raster(self, output_path: Path) -> Path:
        """Save the combined change ratio to a GeoTIFF (invalid pixels as NaN)."""
        output_path.parent.mkdir(parents=True, exist_ok=True)
        self.combined.data.where(self.combined.valid).rio.to_raster(output_path)
        return output_path


def normalized_difference_ratio(pre: Raster, post: Raster) -> Raster:
    """Normalized difference ratio for one polarization.

    NDR = (post - pre) / (post + pre)

    A zero denominator or non-finite result leaves the pixel undefined
    (invalid, NaN) rather than raising.

    Args:
        pre: Smoothed reference-period backscatter.
        post: Smoothed flood-period backscatter on the same grid.

    Returns:
        Ratio raster; negative values indicate a backscatter drop.
    """
    if not pre.same_grid(post):
        raise ValueError(f"Pre ({pre.shape}) and post ({post.shape}) rasters are not on the same grid")

    pre_f = pre.data.astype(np.float64)
    post_f = post.data.astype(np.float64)
    denominator = post_f + pre_f

    with np.errstate(divide="ignore", invalid="ignore"):
        ratio = (post_f - pre_f) / denominator

    valid = pre.valid & post.valid & (denominator != 0) & np.isfinite(ratio)
    ratio = ratio.where(valid)

    return pre.with_values(ratio, valid, name=f"NDR_{post.name or pre.name}")


def combine_min(ratios: list[Raster]) -> Raster:
    """Pixel-wise minimum across polarization ratios.

    Surfaces whichever band dropped most, so a single polarization is enough
    to flag a pixel. A pixel is defined only where every input is defined.
    """
    if not ratios:
        raise ValueError("At least one ratio raster is required")

    reference = ratios[0]
    for other in ratios[1:]:
        if not reference.same_grid(other):
            raise ValueError(f"Ratio {other.name!r} is not on the grid of {reference.name!r}")

    combined = reference.data
    valid = reference.valid
    for other in ratios[1:]:
        combined = np.fmin(combined, other.data)
        valid = valid & other.valid

    combined = combined.where(valid)
    return reference.with_values(combined, valid, name="NDR")


def detect_change(
    pre: Raster,
    post: Raster,
    polarizations: tuple[str, ...] | list[str],
) -> ChangeResult:
    """Compute per-polarization NDR and combine them by minimum.

    Args:
        pre: Smoothed multi-band reference composite.
        post: Smoothed multi-band flood composite.
        polarizations: Band names to compare (e.g. ``("VV", "VH")``).

    Returns:
        ChangeResult with individual and combined ratios.
    """
    logger.info("Detecting backscatter change", polarizations=list(polarizations))

    ratios = {
        pol: normalized_difference_ratio(pre.band(pol), post.band(pol))
        for pol in polarizations
    }
    combined = combine_min(list(ratios.values()))

    values = combined.valid_values()
    stats = {
        "valid_pixels": int(values.size),
        "total_pixels": int(combined.valid.size),
        "mean_ratio": float(values.mean()) if values.size else float("nan"),
        "min_ratio": float(values.min()) if values.size else float("nan"),
        "max_ratio": float(values.max()) if values.size else float("nan"),
    }

    logger.info(
        "Change detection complete",
        valid_pixels=stats["valid_pixels"],
        mean_ratio=f"{stats['mean_ratio']:.3f}",
    )
    return ChangeResult(ratios=ratios, combined=combined, stats=stats)
