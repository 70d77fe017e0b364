"""Collection and tag derivation for catalog records."""

from artimport.classify.taxonomy import (
    ERA_PERIODS,
    THEME_KEYWORDS,
    derive_labels,
    era_collections,
    parse_year,
    theme_labels,
)

__all__ = [
    "ERA_PERIODS",
    "THEME_KEYWORDS",
    "derive_labels",
    "era_collections",
    "parse_year",
    "theme_labels",
]
