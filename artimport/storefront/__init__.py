"""Storefront publishing."""

from artimport.storefront.shopify import (
    PublishError,
    ShopifyPublisher,
    create_handle,
    product_sku,
)

__all__ = ["PublishError", "ShopifyPublisher", "create_handle", "product_sku"]
