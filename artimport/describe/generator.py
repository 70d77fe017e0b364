"""Generate listing copy (raw / short / expanded) for a catalog record.

The LLM call is gated by the ``openai`` budget. Any provider failure degrades
to text synthesized from the record itself, so an item is never lost because
copywriting failed. An upstream 429 also arms the governor so the *next* item
pauses the job instead of hammering the provider.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader
from pydantic import BaseModel

from artimport.llm.base import LLMProvider
from artimport.ratelimit import OPENAI, RateGovernor, retry_after_seconds

logger = logging.getLogger(__name__)

PROMPTS_DIR = Path(__file__).resolve().parent / "prompts"
SYSTEM_PROMPT = (
    "You are an expert art historian and copywriter who specializes in creating "
    "engaging product descriptions for art prints."
)
CHARS_PER_TOKEN = 4


class ArtworkDescriptions(BaseModel):
    raw: str = ""
    short: str = ""
    expanded: str = ""


class _GeneratedCopy(BaseModel):
    short: str
    expanded: str


def raw_description(record: dict[str, Any]) -> str:
    return (record.get("objectDescription") or record.get("creditLine") or "").strip()


def synthesize_descriptions(record: dict[str, Any]) -> ArtworkDescriptions:
    """Deterministic copy built only from the record's fields."""
    title = record.get("title") or "Untitled"
    artist = record.get("artistDisplayName") or "Unknown artist"
    date = record.get("objectDate") or "Unknown date"
    medium = (record.get("medium") or "").strip()
    short = f"{title} ({date}) by {artist}."
    if medium:
        short += f" {medium}."
    short += " From the collection of the Metropolitan Museum of Art."

    details = []
    for label, key in (
        ("Classification", "classification"),
        ("Culture", "culture"),
        ("Department", "department"),
        ("Dimensions", "dimensions"),
    ):
        value = record.get(key)
        if value:
            details.append(f"{label}: {value}.")
    raw = raw_description(record)
    expanded = " ".join(p for p in [short, raw, " ".join(details)] if p)
    return ArtworkDescriptions(raw=raw, short=short, expanded=expanded)


class DescriptionGenerator:
    def __init__(self, provider: LLMProvider | None, governor: RateGovernor):
        self._provider = provider
        self._governor = governor
        env = Environment(loader=FileSystemLoader(str(PROMPTS_DIR)))
        self._template = env.get_template("describe_artwork.j2")

    def render_prompt(self, record: dict[str, Any]) -> str:
        return self._template.render(
            title=record.get("title") or "Untitled",
            artist=record.get("artistDisplayName") or "Unknown artist",
            date=record.get("objectDate") or "Unknown date",
            medium=record.get("medium") or "Unknown medium",
            classification=record.get("classification") or "",
            culture=record.get("culture") or "",
            raw=raw_description(record),
        )

    def generate(self, record: dict[str, Any]) -> ArtworkDescriptions:
        if self._provider is None:
            return synthesize_descriptions(record)

        # Throttling here propagates: the job pauses before the call is made
        self._governor.check_budget(OPENAI)
        prompt = self.render_prompt(record)
        try:
            copy = self._provider.complete_structured(prompt, _GeneratedCopy, system=SYSTEM_PROMPT)
        except Exception as e:
            self._handle_provider_error(e, record)
            return synthesize_descriptions(record)

        tokens = getattr(self._provider, "last_total_tokens", None)
        if tokens is None:
            tokens = (len(prompt) + len(copy.short) + len(copy.expanded)) // CHARS_PER_TOKEN
        self._governor.record_usage(OPENAI, tokens)

        return ArtworkDescriptions(
            raw=raw_description(record),
            short=copy.short.strip(),
            expanded=copy.expanded.strip(),
        )

    def _handle_provider_error(self, error: Exception, record: dict[str, Any]) -> None:
        object_id = record.get("objectID")
        if getattr(error, "status_code", None) == 429:
            response = getattr(error, "response", None)
            retry_after = retry_after_seconds(getattr(response, "headers", None))
            self._governor.set_throttled(OPENAI, retry_after)
            logger.warning(
                "LLM rate limit hit for object %s; retry after %.0fs, using fallback copy",
                object_id,
                retry_after,
            )
        else:
            logger.warning("Description generation failed for object %s: %s", object_id, error)
