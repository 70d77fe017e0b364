"""Wire settings into a ready-to-run job processor."""

import logging

from artimport.catalog import MetCatalogClient
from artimport.config import Settings
from artimport.describe import DescriptionGenerator
from artimport.images import ImageCache
from artimport.jobs import JobStore, create_job_store
from artimport.llm import provider_from_settings
from artimport.pipeline import EnrichmentPipeline, JobInitializer
from artimport.ratelimit import RateGovernor
from artimport.scheduler import JobProcessor
from artimport.storefront import ShopifyPublisher

logger = logging.getLogger(__name__)


def build_processor(settings: Settings, store: JobStore | None = None) -> JobProcessor:
    """Construct the governor, external clients, pipeline and processor."""
    store = store or create_job_store(settings)
    governor = RateGovernor.from_settings(settings)

    catalog = MetCatalogClient(
        governor,
        base_url=settings.met_api_base,
        timeout=settings.met_request_timeout,
    )
    images = ImageCache(settings.images_dir, governor)

    provider = provider_from_settings(settings)
    if provider is None:
        logger.warning(
            "No API key for %s; using template descriptions", settings.artimport_llm_provider
        )
    describer = DescriptionGenerator(provider, governor)

    publisher = ShopifyPublisher(
        governor,
        shop_name=settings.shopify_shop_name,
        access_token=settings.shopify_access_token,
        api_version=settings.shopify_api_version,
    )

    initializer = JobInitializer(
        catalog,
        sample_size=settings.filter_sample_size,
        match_threshold=settings.filter_match_threshold,
        max_candidates=settings.filter_max_candidates,
    )
    pipeline = EnrichmentPipeline(catalog, images, describer, publisher, published=store)
    return JobProcessor(
        store,
        initializer,
        pipeline,
        poll_interval=settings.artimport_poll_interval,
        item_delay=settings.artimport_item_delay,
        error_backoff=settings.artimport_error_backoff,
    )
