"""Shopify storefront publisher (Admin REST API over httpx).

Products are keyed by a deterministic handle (``<slug>-<object id>``) and SKU
(``MET-<object id>``). ``publish`` looks the handle up first and returns the
existing product instead of creating a second one, so re-running an item after
a crash (or after a throttle pause mid-publish) does not duplicate the listing.
"""

from __future__ import annotations

import base64
import logging
import re
from pathlib import Path
from typing import Any

import httpx

from artimport.describe.generator import ArtworkDescriptions
from artimport.ratelimit import SHOPIFY, RateGovernor, RateLimitExceeded, retry_after_seconds

logger = logging.getLogger(__name__)

CALL_LIMIT_HEADER = "x-shopify-shop-api-call-limit"
CALL_LIMIT_MARGIN = 5
CALL_LIMIT_COOLDOWN = 10.0


class PublishError(Exception):
    """Publishing to the storefront failed."""


def create_handle(title: str, object_id: int) -> str:
    slug = re.sub(r"[^\w\s-]", "", (title or "").lower())
    slug = re.sub(r"[\s_]+", "-", slug).strip("-")[:90]
    return f"{slug}-{object_id}" if slug else f"artwork-{object_id}"


def product_sku(object_id: int) -> str:
    return f"MET-{object_id}"


class ShopifyPublisher:
    def __init__(
        self,
        governor: RateGovernor,
        shop_name: str | None = None,
        access_token: str | None = None,
        api_version: str = "2024-10",
        client: httpx.Client | None = None,
        timeout: float = 30.0,
        max_inline_wait: float = 2.0,
    ):
        self._governor = governor
        self._max_inline_wait = max_inline_wait
        self._configured = bool(shop_name and access_token)
        if not self._configured:
            logger.warning("Shopify credentials not provided; storefront uploads are disabled")
        self._base_url = f"https://{shop_name}.myshopify.com/admin/api/{api_version}"
        self._client = client or httpx.Client(timeout=timeout)
        self._headers = {"X-Shopify-Access-Token": access_token or ""}

    @property
    def is_configured(self) -> bool:
        return self._configured

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        # Short request-window waits are absorbed here; longer throttles pause the job
        self._governor.acquire(SHOPIFY, max_wait=self._max_inline_wait)
        try:
            response = self._client.request(
                method, f"{self._base_url}{path}", headers=self._headers, **kwargs
            )
        except httpx.HTTPError as e:
            raise PublishError(f"Shopify request {method} {path} failed: {e}") from e

        self._watch_call_limit(response)
        if response.status_code == 429:
            retry_after = retry_after_seconds(response.headers)
            self._governor.set_throttled(SHOPIFY, retry_after)
            raise RateLimitExceeded(SHOPIFY, retry_after)
        if response.status_code >= 400:
            raise PublishError(
                f"Shopify API error {response.status_code} on {method} {path}: {response.text[:300]}"
            )
        return response.json() if response.content else {}

    def _watch_call_limit(self, response: httpx.Response) -> None:
        header = response.headers.get(CALL_LIMIT_HEADER)
        if not header or "/" not in header:
            return
        try:
            used, limit = (int(n) for n in header.split("/", 1))
        except ValueError:
            return
        if used >= limit - CALL_LIMIT_MARGIN:
            logger.warning("Shopify API call limit approaching: %d/%d", used, limit)
            self._governor.set_throttled(SHOPIFY, CALL_LIMIT_COOLDOWN)

    def find_product(self, handle: str) -> str | None:
        data = self._request("GET", "/products.json", params={"handle": handle, "fields": "id"})
        products = data.get("products") or []
        return str(products[0]["id"]) if products else None

    def publish(
        self,
        record: dict[str, Any],
        descriptions: ArtworkDescriptions,
        image_path: Path | str,
        collections: list[str],
        tags: list[str],
        price: float,
    ) -> str:
        """Create (or find) the product for ``record``; return its product id."""
        if not self._configured:
            raise PublishError("Shopify API is not configured")

        object_id = int(record["objectID"])
        handle = create_handle(record.get("title") or "", object_id)
        product_id = self.find_product(handle)
        if product_id:
            logger.info("Object %s already published as product %s", object_id, product_id)
        else:
            product_id = self._create_product(record, descriptions, image_path, tags, price, handle)

        # Re-attaching is harmless: Shopify rejects duplicate collects and that is logged
        for name in collections:
            try:
                self._add_to_collection(product_id, name)
            except PublishError as e:
                logger.warning("Could not add product %s to collection %s: %s", product_id, name, e)
        return product_id

    def _create_product(
        self,
        record: dict[str, Any],
        descriptions: ArtworkDescriptions,
        image_path: Path | str,
        tags: list[str],
        price: float,
        handle: str,
    ) -> str:
        object_id = int(record["objectID"])
        image_data = base64.b64encode(Path(image_path).read_bytes()).decode("ascii")
        product = {
            "title": record.get("title") or "Untitled",
            "handle": handle,
            "body_html": descriptions.short,
            "vendor": record.get("artistDisplayName") or "Unknown Artist",
            "product_type": record.get("classification") or "Artwork",
            "tags": ", ".join(tags),
            "published": True,
            "variants": [
                {
                    "price": f"{price:.2f}",
                    "sku": product_sku(object_id),
                    "inventory_policy": "continue",
                    "requires_shipping": True,
                    "taxable": True,
                }
            ],
            "images": [{"attachment": image_data, "filename": f"{object_id}.jpg"}],
            "metafields": [
                _metafield("year", record.get("objectDate") or "Unknown"),
                _metafield("source", "Metropolitan Museum of Art"),
                _metafield("object_id", str(object_id)),
                _metafield("raw_description", descriptions.raw, multi_line=True),
                _metafield("expanded_description", descriptions.expanded, multi_line=True),
            ],
        }
        data = self._request("POST", "/products.json", json={"product": product})
        return str(data["product"]["id"])

    def _add_to_collection(self, product_id: str, name: str) -> None:
        data = self._request("GET", "/custom_collections.json", params={"title": name})
        found = data.get("custom_collections") or []
        if found:
            collection_id = found[0]["id"]
        else:
            created = self._request(
                "POST",
                "/custom_collections.json",
                json={"custom_collection": {"title": name, "published": True}},
            )
            collection_id = created["custom_collection"]["id"]
        self._request(
            "POST",
            "/collects.json",
            json={"collect": {"product_id": int(product_id), "collection_id": collection_id}},
        )


def _metafield(key: str, value: str, multi_line: bool = False) -> dict[str, str]:
    return {
        "namespace": "art",
        "key": key,
        "value": value or "",
        "type": "multi_line_text_field" if multi_line else "single_line_text_field",
    }
