"""Image download cache."""

from artimport.images.cache import ImageCache, ImageFetchError

__all__ = ["ImageCache", "ImageFetchError"]
