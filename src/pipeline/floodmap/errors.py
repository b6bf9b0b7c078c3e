"""Error taxonomy for the flood mapping pipeline."""


class FloodMapError(Exception):
    """Base class for all pipeline errors."""


class MalformedConfig(FloodMapError):
    """Invalid AOI, date window, or threshold. Raised before any provider call."""


class DataUnavailable(FloodMapError):
    """No source scene satisfies the query predicates for a window.

    Never retried by the pipeline: choosing another window is up to the user.
    """

    def __init__(self, product_id: str, message: str = "no qualifying scenes"):
        self.product_id = product_id
        super().__init__(f"{product_id}: {message}")


class ResourceLimitExceeded(FloodMapError):
    """Zonal aggregation would read more pixels than the configured budget."""

    def __init__(self, requested_pixels: int, max_pixels: int):
        self.requested_pixels = requested_pixels
        self.max_pixels = max_pixels
        super().__init__(
            f"Aggregation needs {requested_pixels:,} pixels, budget is {max_pixels:,}"
        )


class Cancelled(FloodMapError):
    """Evaluation was cancelled before completion. No partial results are kept."""


class Timeout(Cancelled):
    """Evaluation exceeded its time budget."""

    def __init__(self, timeout_s: float):
        self.timeout_s = timeout_s
        super().__init__(f"Evaluation did not finish within {timeout_s:g}s")
