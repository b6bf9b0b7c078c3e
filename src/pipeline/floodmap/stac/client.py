"""STAC catalog client for Microsoft Planetary Computer."""

from typing import Any

import planetary_computer
import pystac_client
import structlog

from floodmap.config import StacConfig

logger = structlog.get_logger()


class StacClient:
    """Client for searching radar, optical, elevation and land cover items."""

    def __init__(self, stac_config: StacConfig | None = None, catalog_url: str | None = None):
        """Initialize the STAC client.

        Args:
            stac_config: STAC configuration. Defaults to Planetary Computer.
            catalog_url: Override for the catalog URL.
        """
        self.config = stac_config or StacConfig()
        self.catalog_url = catalog_url or self.config.catalog_url

        self._client: pystac_client.Client | None = None

    @property
    def client(self) -> pystac_client.Client:
        """Get or create the STAC client."""
        if self._client is None:
            self._client = pystac_client.Client.open(
                self.catalog_url,
                modifier=planetary_computer.sign_inplace,
            )
            logger.info("Connected to STAC catalog", url=self.catalog_url)
        return self._client

    def search(
        self,
        collection: str,
        bbox: tuple[float, float, float, float],
        datetime: str | None = None,
        query: dict[str, Any] | None = None,
        max_items: int | None = None,
    ) -> list[Any]:
        """Search a collection within a bounding box and optional date range.

        Args:
            collection: STAC collection id.
            bbox: Bounding box as (min_lon, min_lat, max_lon, max_lat).
            datetime: Interval ``YYYY-MM-DD/YYYY-MM-DD``, or None for static products.
            query: STAC query extension filters.
            max_items: Maximum number of items to return.

        Returns:
            List of pystac Items, newest first.
        """
        max_items = max_items or self.config.max_items

        logger.info(
            "Searching STAC catalog",
            collection=collection,
            bbox=bbox,
            date_range=datetime,
            query=query,
        )

        search_kwargs: dict[str, Any] = {
            "collections": [collection],
            "bbox": bbox,
            "max_items": max_items,
        }
        if datetime:
            search_kwargs["datetime"] = datetime
            search_kwargs["sortby"] = [{"field": "properties.datetime", "direction": "desc"}]
        if query:
            search_kwargs["query"] = query

        items = list(self.client.search(**search_kwargs).items())
        logger.info("Search complete", collection=collection, num_results=len(items))
        return items
