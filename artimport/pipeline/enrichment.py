"""Per-item enrichment: fetch → validate → image → copy → labels → publish.

``process`` returns an ``ItemOutcome``: either *skipped* (not found, not
eligible, already published) or a processed ``ItemResult``. Error semantics:

* ``RateLimitExceeded`` always propagates; the scheduler pauses the job and
  retries this same id later.
* A storefront failure is recorded on the result (``error``, no
  ``publish_ref``); the item still counts as processed.
* Anything else propagates and the scheduler records the id as failed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

from artimport.classify.taxonomy import derive_labels, parse_year
from artimport.describe.generator import ArtworkDescriptions
from artimport.jobs.models import ItemResult, JobOptions
from artimport.ratelimit import RateLimitExceeded

logger = logging.getLogger(__name__)


class Catalog(Protocol):
    def get_details(self, object_id: int) -> dict[str, Any] | None: ...


class ImageStore(Protocol):
    def fetch_or_get_cached(self, url: str, object_id: int): ...


class Describer(Protocol):
    def generate(self, record: dict[str, Any]) -> ArtworkDescriptions: ...


class Publisher(Protocol):
    def publish(self, record, descriptions, image_path, collections, tags, price) -> str: ...


class PublishLookup(Protocol):
    def find_publish_ref(self, object_id: int) -> str | None: ...


@dataclass
class ItemOutcome:
    object_id: int
    result: ItemResult | None = None
    skip_reason: str | None = None

    @property
    def skipped(self) -> bool:
        return self.result is None


def is_eligible(
    record: dict[str, Any] | None,
    require_public_domain: bool = True,
    require_image: bool = True,
) -> bool:
    """Licensable (public domain) and has a primary image."""
    if not record:
        return False
    if require_public_domain and not record.get("isPublicDomain"):
        return False
    if require_image and not record.get("primaryImage"):
        return False
    return True


class EnrichmentPipeline:
    def __init__(
        self,
        catalog: Catalog,
        images: ImageStore,
        describer: Describer,
        publisher: Publisher,
        published: PublishLookup | None = None,
    ):
        self._catalog = catalog
        self._images = images
        self._describer = describer
        self._publisher = publisher
        self._published = published

    def process(self, object_id: int, options: JobOptions) -> ItemOutcome:
        if options.skip_existing and self._published is not None:
            ref = self._published.find_publish_ref(object_id)
            if ref:
                logger.info("Object %s already published as %s, skipping", object_id, ref)
                return ItemOutcome(object_id, skip_reason="already published")

        record = self._catalog.get_details(object_id)
        if record is None:
            return ItemOutcome(object_id, skip_reason="not found")
        if not is_eligible(record):
            return ItemOutcome(object_id, skip_reason="not public domain or no image")

        image_path = self._images.fetch_or_get_cached(record["primaryImage"], object_id)
        descriptions = self._describer.generate(record)
        collections, tags = derive_labels(record)

        result = ItemResult(
            object_id=object_id,
            title=record.get("title") or "Untitled",
            artist=record.get("artistDisplayName") or "Unknown Artist",
            date=record.get("objectDate") or "Unknown",
            year=parse_year(record.get("objectBeginDate")),
            image_url=record["primaryImage"],
            image_path=str(image_path),
            raw_description=descriptions.raw,
            short_description=descriptions.short,
            expanded_description=descriptions.expanded,
            collections=collections,
            tags=tags,
        )

        if not options.skip_shopify_upload:
            try:
                result.publish_ref = self._publisher.publish(
                    record,
                    descriptions,
                    image_path,
                    collections,
                    tags,
                    options.default_price,
                )
            except RateLimitExceeded:
                raise
            except Exception as e:
                logger.error("Error uploading object %s to storefront: %s", object_id, e)
                result.error = f"Shopify upload failed: {e}"

        result.processed = True
        return ItemOutcome(object_id, result=result)
