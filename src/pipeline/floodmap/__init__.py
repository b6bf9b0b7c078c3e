"""SAR flood extent mapping and land cover impact reporting."""

__version__ = "0.1.0"
