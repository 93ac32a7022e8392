"""
Catalog Probe - Search and index endpoint checks.

Verifies that song search, artist search and the artist index answer
with non-empty collections. The artist index doubles as a catalog
completeness check: a sudden drop below the configured minimum means
the catalog failed to load.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

from synthetic_checks.config import MonitorSettings
from synthetic_checks.exceptions import ProbeFailure
from synthetic_checks.logging import get_logger


logger = get_logger("probes.catalog")


@dataclass(frozen=True)
class SearchResult:
    """Collection returned by a catalog search."""

    query: str
    items: list[Any]
    count: int

    @property
    def empty(self) -> bool:
        return not self.items


class CatalogProbe:
    """Query the catalog endpoints of one deployment."""

    def __init__(self, client: httpx.Client, settings: MonitorSettings):
        self.client = client
        self.settings = settings

    def search_songs(self, query: str | None = None, per_page: int = 5) -> SearchResult:
        query = query or self.settings.song_search_query
        body = self._get_json(
            self.settings.song_search_path, {"q": query, "per_page": per_page}
        )
        return self._collection(body, "songs", query)

    def search_artists(self, query: str | None = None, limit: int = 5) -> SearchResult:
        query = query or self.settings.artist_search_query
        body = self._get_json(
            self.settings.artist_search_path, {"q": query, "limit": limit}
        )
        return self._collection(body, "artists", query)

    def artist_index_count(self) -> int:
        """Size of the artist index, from ``count`` or the collection length."""
        body = self._get_json(self.settings.artist_index_path)

        if isinstance(body, list):
            return len(body)
        if isinstance(body, dict):
            count = body.get("count")
            if isinstance(count, int) and count:
                return count
            artists = body.get("artists")
            if isinstance(artists, list):
                return len(artists)

        raise ProbeFailure(
            "Artist index body has neither 'count' nor 'artists'",
            details={"path": self.settings.artist_index_path},
        )

    def require_catalog_complete(self, minimum: int | None = None) -> int:
        """Raise ProbeFailure when the artist index is smaller than expected."""
        minimum = self.settings.min_artist_index_count if minimum is None else minimum
        count = self.artist_index_count()
        if count <= minimum:
            raise ProbeFailure(
                f"Artist index has {count} artists, expected more than {minimum}",
                details={"count": count, "minimum": minimum},
            )
        logger.info(f"artist index holds {count} artists")
        return count

    def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        url = f"{self.settings.api_origin}{path}"
        try:
            response = self.client.get(
                url,
                params=params,
                timeout=self.settings.catalog_timeout_ms / 1000,
            )
        except httpx.TimeoutException as e:
            raise ProbeFailure(
                f"Catalog request to {url} timed out",
                details={"url": url},
            ) from e
        except httpx.RequestError as e:
            raise ProbeFailure(f"Cannot connect to {url}: {e}", details={"url": url}) from e

        if not response.is_success:
            raise ProbeFailure(
                f"Catalog request to {url} returned HTTP {response.status_code}",
                details={"url": url, "status_code": response.status_code},
            )

        try:
            return response.json()
        except ValueError as e:
            raise ProbeFailure(
                f"Catalog request to {url} returned a non-JSON body",
                details={"url": url},
            ) from e

    @staticmethod
    def _collection(body: Any, key: str, query: str) -> SearchResult:
        if not isinstance(body, dict) or not isinstance(body.get(key), list):
            raise ProbeFailure(
                f"Search response for '{query}' has no '{key}' array",
                details={"key": key, "query": query},
            )
        items = body[key]
        count = body.get("count", body.get("total", len(items)))
        if not isinstance(count, int):
            count = len(items)
        return SearchResult(query=query, items=items, count=count)
