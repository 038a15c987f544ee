"""
Google Places text search client.

The cluster agent only needs text search and photo URLs, so this client
wraps exactly those two calls of the Places web service.
"""

import logging
import os
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

import httpx

from city_intelligence.shared.contracts import Coordinates


logger = logging.getLogger(__name__)

PLACES_API_BASE = "https://maps.googleapis.com/maps/api/place"


@runtime_checkable
class PlacesClient(Protocol):
    """Text search over a places provider."""

    async def text_search(
        self, query: str, coordinates: Optional[Coordinates] = None
    ) -> List[Dict[str, Any]]:
        ...

    def photo_url(self, photo_reference: str, max_width: int = 400) -> str:
        ...


class GooglePlacesClient:
    """Async Google Places client.

    Results are returned in the raw Places ``results`` shape (``place_id``,
    ``name``, ``geometry.location``, ``types``, ``rating``, ...).
    """

    def __init__(self, api_key: Optional[str] = None, radius_m: int = 5000) -> None:
        self._api_key = api_key or os.environ.get("GOOGLE_PLACES_API_KEY")
        if not self._api_key:
            raise ValueError("GOOGLE_PLACES_API_KEY environment variable is not set.")
        self._radius_m = radius_m
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=PLACES_API_BASE,
                timeout=httpx.Timeout(15.0, connect=5.0),
            )
        return self._client

    async def text_search(
        self, query: str, coordinates: Optional[Coordinates] = None
    ) -> List[Dict[str, Any]]:
        """Search places matching ``query``, biased towards ``coordinates``.

        Raises:
            httpx.HTTPError: On transport failures or non-2xx responses.
        """
        params: Dict[str, Any] = {"query": query, "key": self._api_key}
        if coordinates is not None:
            params["location"] = f"{coordinates.lat},{coordinates.lng}"
            params["radius"] = self._radius_m

        client = await self._get_client()
        response = await client.get("/textsearch/json", params=params)
        response.raise_for_status()
        payload = response.json()

        status = payload.get("status")
        if status not in ("OK", "ZERO_RESULTS"):
            logger.warning("Places search for %r returned status=%s", query, status)
            return []

        return payload.get("results", [])

    def photo_url(self, photo_reference: str, max_width: int = 400) -> str:
        return (
            f"{PLACES_API_BASE}/photo?maxwidth={max_width}"
            f"&photo_reference={photo_reference}&key={self._api_key}"
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
