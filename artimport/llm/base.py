"""LLM provider protocol used by the description generator."""

import json
import re
from typing import Any, Protocol, TypeVar

from pydantic import BaseModel

T = TypeVar("T", bound=BaseModel)

JSON_INSTRUCTION = (
    "Respond with a single JSON object only. No markdown, no code fence, no explanation."
)


class LLMProvider(Protocol):
    """Protocol for LLM backends (OpenAI, Anthropic).

    ``last_total_tokens`` holds the token count of the most recent call when the
    backend reports it, else None.
    """

    last_total_tokens: int | None

    def complete(self, prompt: str, system: str | None = None, **kwargs: Any) -> str:
        """Return raw text completion."""
        ...

    def complete_structured(
        self, prompt: str, schema: type[T], system: str | None = None, **kwargs: Any
    ) -> T:
        """Return completion parsed into the given Pydantic model (JSON)."""
        ...


def parse_json_reply(raw: str, schema: type[T]) -> T:
    """Strip an optional markdown fence and validate the JSON against ``schema``."""
    text = raw.strip()
    if text.startswith("```"):
        text = re.sub(r"^```\w*\n?", "", text)
        text = re.sub(r"\n?```\s*$", "", text)
    return schema.model_validate(json.loads(text))
