"""ESA WorldCover land cover classes and overlay with the flood mask."""

import structlog

from floodmap.raster.model import Raster

logger = structlog.get_logger()


# ESA WorldCover v100 class codes and display names
WORLDCOVER_CLASSES: dict[int, str] = {
    10: "Tree Cover",
    20: "Shrubland",
    30: "Grassland",
    40: "Cropland",
    50: "Built-up",
    60: "Bare/Sparse Veg",
    70: "Snow/Ice",
    80: "Water",
    90: "Wetlands",
    95: "Mangrove",
    100: "Moss/Lichen",
}

# Official WorldCover legend colours
WORLDCOVER_PALETTE: dict[int, str] = {
    10: "#006400",
    20: "#ffbb22",
    30: "#ffff4c",
    40: "#f096ff",
    50: "#fa0000",
    60: "#b4b4b4",
    70: "#f0f0f0",
    80: "#0064c8",
    90: "#0096a0",
    95: "#00cf75",
    100: "#fae6a0",
}

UNKNOWN_CLASS_COLOR = "#808080"


def resolve_class_name(code: int) -> str:
    """Human-readable label for a class code, ``"Class <code>"`` if unknown."""
    return WORLDCOVER_CLASSES.get(int(code), f"Class {int(code)}")


def class_color(code: int) -> str:
    return WORLDCOVER_PALETTE.get(int(code), UNKNOWN_CLASS_COLOR)


def flooded_land_cover(land_cover: Raster, flood_mask: Raster) -> Raster:
    """Restrict land cover to pixels represented in the flood mask.

    Args:
        land_cover: Categorical land cover raster on the flood mask grid.
        flood_mask: Self-masked flood raster.

    Returns:
        Land cover raster valid only where both inputs are valid.
    """
    if not land_cover.same_grid(flood_mask):
        raise ValueError(
            f"Land cover {land_cover.shape} and flood mask {flood_mask.shape} grids differ"
        )

    overlay = land_cover.masked(flood_mask.valid)
    logger.debug("Land cover masked to flood extent", flooded_pixels=overlay.valid_count())
    return Raster(data=overlay.data, valid=overlay.valid, name="flooded_land_cover")
