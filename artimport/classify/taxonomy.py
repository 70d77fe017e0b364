"""Era and theme labels for storefront collections and tags.

Deterministic and table driven:

* **Era buckets** map an object's start year onto named date ranges. Ranges
  overlap on purpose (antiquity), so one year can land in several eras.
* **Theme buckets** scan a lower-cased blob of title, description, medium and
  classification for each theme's keywords. Themes are independent; within a
  theme the first matching keyword wins.
"""

from __future__ import annotations

from datetime import date
from typing import Any

ERA_PERIODS: tuple[tuple[str, int, int | None], ...] = (
    ("Prehistoric / Ancient", -10000, 499),
    ("Classical Antiquity", -800, 499),
    ("Medieval", 500, 1399),
    ("Renaissance", 1400, 1599),
    ("Baroque / Rococo", 1600, 1749),
    ("Enlightenment", 1750, 1799),
    ("19th Century", 1800, 1899),
    ("Early 20th Century", 1900, 1945),
    ("Mid to Late 20th Century", 1946, 1999),
    ("Contemporary", 2000, None),  # open-ended: up to the current year
)

THEME_KEYWORDS: dict[str, tuple[str, ...]] = {
    "People": ("people", "person", "human", "figure", "portrait", "man", "woman", "boy", "girl"),
    "Historical Figures": ("king", "queen", "emperor", "empress", "president", "ruler", "historical figure"),
    "Scientists, Artists, Writers": ("scientist", "artist", "writer", "composer", "inventor", "author", "philosopher"),
    "Royalty / Nobility": ("royal", "king", "queen", "prince", "princess", "duke", "duchess", "noble", "court"),
    "Portraits": ("portrait",),
    "Events": ("event", "scene", "ceremony", "celebration", "festival", "ritual"),
    "Battles / Wars": ("battle", "war", "military", "soldier", "army", "combat", "warrior", "conflict"),
    "Scientific Discoveries": ("discovery", "science", "experiment", "scientific", "laboratory"),
    "Inventions": ("invention", "machine", "device", "technology", "mechanical"),
    "Political Events": ("political", "government", "state", "ceremony", "diplomatic", "revolution"),
    "Nature": ("nature", "natural", "landscape", "outdoor", "garden", "field"),
    "Animals": ("animal", "beast", "bird", "fish", "dog", "cat", "horse", "lion", "tiger", "creature"),
    "Landscapes": ("landscape", "scenery", "vista", "mountain", "river", "lake", "ocean", "sea", "forest"),
    "Astronomy": ("astronomy", "star", "planet", "moon", "sun", "celestial", "space", "constellation", "galaxy", "cosmic"),
    "Botanical / Plants": ("botanical", "plant", "flower", "tree", "garden", "leaf", "blossom", "fruit", "floral"),
    "Mythology & Religion": ("myth", "mythology", "god", "goddess", "deity", "religious", "religion", "sacred", "holy"),
    "Greek / Roman Myths": ("greek", "roman", "myth", "olympus", "zeus", "apollo", "athens", "hercules"),
    "Biblical Scenes": ("bible", "biblical", "jesus", "christ", "apostle", "saint", "madonna", "angel", "virgin"),
    "Eastern Religions": ("buddha", "buddhist", "hindu", "islam", "islamic", "eastern religion", "zen", "yoga"),
    "Family & Domestic Life": ("family", "domestic", "home", "household", "interior", "daily life", "domestic scene"),
    "Childhood": ("child", "children", "boy", "girl", "infant", "baby", "youth", "childhood", "play", "toys"),
    "Motherhood": ("mother", "motherhood", "maternal", "nurturing", "child", "baby", "madonna"),
    "Everyday Life": ("everyday", "daily", "routine", "ordinary", "common", "daily life", "life scene"),
    "Fantasy & Imagination": ("fantasy", "imagination", "dream", "imaginary", "magical", "surreal", "otherworldly"),
    "Allegorical Scenes": ("allegory", "allegorical", "symbolic", "metaphor", "personification", "symbol"),
    "Fairy Tales": ("fairy tale", "fairy", "tale", "story", "folklore", "legend", "fable", "fantasy"),
    "Fantastical Creatures": ("dragon", "unicorn", "griffin", "phoenix", "monster", "mythical", "creature", "beast"),
    "Architecture & Cities": ("architecture", "building", "structure", "city", "town", "urban", "construction"),
    "Buildings": ("building", "house", "palace", "castle", "cathedral", "church", "temple", "monument", "structure"),
    "Historical Maps": ("map", "cartography", "atlas", "geography", "historical map", "territory"),
    "Cityscapes": ("cityscape", "skyline", "urban", "city", "town", "street", "avenue", "building"),
    "Technology & Innovation": ("technology", "innovation", "invention", "machine", "engineering", "progress", "modern"),
    "Machines": ("machine", "mechanical", "engine", "device", "apparatus", "mechanism", "technological"),
    "Transportation": ("transportation", "vehicle", "ship", "boat", "train", "carriage", "automobile", "travel"),
    "Industrial Scenes": ("industrial", "factory", "industry", "manufacturing", "production", "labor", "worker"),
    "American Art": ("america", "american", "united states", "usa", "u.s.", "new york", "california"),
    "European Art": ("europe", "european", "france", "french", "italy", "italian", "british", "england", "english", "spain", "spanish"),
    "Asian Art": ("asia", "asian", "china", "chinese", "japan", "japanese", "india", "indian", "korea", "korean"),
    "African Art": ("africa", "african", "egypt", "egyptian"),
}

# Cultures that also get their own "<culture> Art" collection
NOTABLE_CULTURES = ("american", "british", "french", "italian", "chinese", "japanese")


def parse_year(value: Any) -> int | None:
    """Leading integer of ``value`` (``"1887"``, ``-300``, ``"1650–70"``), else None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if value is None:
        return None
    text = str(value).strip()
    sign = 1
    if text.startswith("-"):
        sign, text = -1, text[1:]
    digits = ""
    for ch in text:
        if not ch.isdigit():
            break
        digits += ch
    return sign * int(digits) if digits else None


def era_collections(year: int | None) -> list[str]:
    if year is None:
        return []
    current_year = date.today().year
    eras = []
    for name, start, end in ERA_PERIODS:
        if start <= year <= (end if end is not None else current_year):
            eras.append(name)
    return eras


def theme_labels(text: str) -> list[str]:
    haystack = text.lower()
    themes = []
    for theme, keywords in THEME_KEYWORDS.items():
        for keyword in keywords:
            if keyword in haystack:
                themes.append(theme)
                break
    return themes


def _append_unique(items: list[str], value: str) -> None:
    if value and value not in items:
        items.append(value)


def derive_labels(record: dict[str, Any]) -> tuple[list[str], list[str]]:
    """Return ``(collections, tags)`` for a catalog record."""
    collections: list[str] = []
    tags: list[str] = []

    for era in era_collections(parse_year(record.get("objectBeginDate"))):
        _append_unique(collections, era)

    blob = " ".join(
        str(record.get(key) or "")
        for key in ("title", "objectDescription", "medium", "classification")
    )
    for theme in theme_labels(blob):
        _append_unique(collections, theme)
        _append_unique(tags, theme)

    for key in ("classification", "department"):
        value = (record.get(key) or "").strip()
        _append_unique(collections, value)
        _append_unique(tags, value)

    culture = (record.get("culture") or "").strip()
    if culture:
        _append_unique(tags, culture)
        if any(c in culture.lower() for c in NOTABLE_CULTURES):
            _append_unique(collections, f"{culture} Art")

    _append_unique(tags, (record.get("country") or "").strip())
    return collections, tags
