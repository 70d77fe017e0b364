"""Listing copy generation."""

from artimport.describe.generator import (
    ArtworkDescriptions,
    DescriptionGenerator,
    synthesize_descriptions,
)

__all__ = ["ArtworkDescriptions", "DescriptionGenerator", "synthesize_descriptions"]
