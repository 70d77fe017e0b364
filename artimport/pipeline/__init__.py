"""Job initialization and per-item enrichment."""

from artimport.pipeline.enrichment import EnrichmentPipeline, ItemOutcome, is_eligible
from artimport.pipeline.initializer import (
    FILTER_CHECKPOINT_KEY,
    FilterProgress,
    JobInitializer,
    PostFilter,
    period_date_range,
)

__all__ = [
    "EnrichmentPipeline",
    "ItemOutcome",
    "is_eligible",
    "FILTER_CHECKPOINT_KEY",
    "FilterProgress",
    "JobInitializer",
    "PostFilter",
    "period_date_range",
]
