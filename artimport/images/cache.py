"""Local image cache: download each object's primary image once."""

from __future__ import annotations

import logging
from pathlib import Path

import httpx

from artimport.ratelimit import MET, RateGovernor, RateLimitExceeded, retry_after_seconds

logger = logging.getLogger(__name__)


class ImageFetchError(Exception):
    """Image could not be downloaded."""


class ImageCache:
    """Stores images as ``<images_dir>/<object_id>.jpg``."""

    def __init__(
        self,
        images_dir: Path,
        governor: RateGovernor,
        client: httpx.Client | None = None,
        timeout: float = 60.0,
    ):
        self._dir = Path(images_dir)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._governor = governor
        self._client = client or httpx.Client(follow_redirects=True, timeout=timeout)

    def path_for(self, object_id: int) -> Path:
        return self._dir / f"{object_id}.jpg"

    def fetch_or_get_cached(self, url: str, object_id: int) -> Path:
        path = self.path_for(object_id)
        if path.exists():
            return path

        self._governor.check_budget(MET)
        try:
            response = self._client.get(url)
        except httpx.HTTPError as e:
            raise ImageFetchError(f"Downloading image for object {object_id} failed: {e}") from e
        if response.status_code == 429:
            retry_after = retry_after_seconds(response.headers)
            self._governor.set_throttled(MET, retry_after)
            raise RateLimitExceeded(MET, retry_after)
        if response.status_code >= 400:
            raise ImageFetchError(
                f"Downloading image for object {object_id} failed: HTTP {response.status_code}"
            )

        tmp = path.with_suffix(".part")
        tmp.write_bytes(response.content)
        tmp.replace(path)
        logger.debug("Cached image for object %s at %s", object_id, path)
        return path
