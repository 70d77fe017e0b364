"""Museum catalog client for the Met public collection API (v1)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from artimport.ratelimit import MET, RateGovernor, RateLimitExceeded, retry_after_seconds

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://collectionapi.metmuseum.org/public/collection/v1"


class CatalogError(Exception):
    """Catalog request failed for a reason other than throttling or not-found."""


@dataclass
class SearchCriteria:
    """Parameters the ``/search`` endpoint understands."""

    q: str = "*"
    has_images: bool = True
    department_id: int | None = None
    date_begin: int | None = None
    date_end: int | None = None
    is_on_view: bool = False
    is_highlight: bool = False

    def to_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {"q": self.q or "*"}
        if self.has_images:
            params["hasImages"] = "true"
        if self.department_id is not None:
            params["departmentId"] = self.department_id
        # dateBegin and dateEnd are only honoured as a pair
        if self.date_begin is not None or self.date_end is not None:
            params["dateBegin"] = self.date_begin if self.date_begin is not None else -10000
            params["dateEnd"] = self.date_end if self.date_end is not None else 3000
        if self.is_on_view:
            params["isOnView"] = "true"
        if self.is_highlight:
            params["isHighlight"] = "true"
        return params


class MetCatalogClient:
    """Search and object-detail calls, each gated by the ``met`` budget."""

    def __init__(
        self,
        governor: RateGovernor,
        base_url: str = DEFAULT_BASE_URL,
        client: httpx.Client | None = None,
        timeout: float = 30.0,
    ):
        self._governor = governor
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(follow_redirects=True, timeout=timeout)

    def close(self) -> None:
        self._client.close()

    def _get(self, path: str, params: dict[str, Any] | None = None) -> httpx.Response:
        self._governor.check_budget(MET)
        try:
            response = self._client.get(f"{self._base_url}{path}", params=params)
        except httpx.HTTPError as e:
            raise CatalogError(f"Catalog request {path} failed: {e}") from e
        if response.status_code == 429:
            retry_after = retry_after_seconds(response.headers)
            self._governor.set_throttled(MET, retry_after)
            raise RateLimitExceeded(MET, retry_after)
        return response

    def search(self, criteria: SearchCriteria) -> list[int]:
        """Return candidate object ids for ``criteria`` (possibly empty)."""
        params = criteria.to_params()
        logger.info("Searching catalog with %s", params)
        response = self._get("/search", params=params)
        if response.status_code >= 400:
            raise CatalogError(f"Catalog search failed: HTTP {response.status_code}")
        try:
            data = response.json()
        except ValueError as e:
            raise CatalogError(f"Catalog search returned invalid JSON: {e}") from e
        object_ids = data.get("objectIDs") or []
        logger.info("Found %d results from catalog", len(object_ids))
        return [int(i) for i in object_ids]

    def get_details(self, object_id: int) -> dict[str, Any] | None:
        """Full object record, or None when the catalog does not know the id."""
        response = self._get(f"/objects/{object_id}")
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise CatalogError(
                f"Fetching object {object_id} failed: HTTP {response.status_code}"
            )
        try:
            return response.json()
        except ValueError as e:
            raise CatalogError(f"Object {object_id} returned invalid JSON: {e}") from e
