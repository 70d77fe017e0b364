"""OpenAI chat completions with JSON-in-prompt structured output."""

from typing import Any

from openai import OpenAI
from pydantic import BaseModel

from artimport.llm.base import JSON_INSTRUCTION, parse_json_reply


class OpenAIProvider:
    """OpenAI chat completion with optional structured (JSON) output.

    SDK exceptions (``RateLimitError`` and friends) propagate unchanged; callers
    read ``status_code`` and ``response.headers`` to detect throttling.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gpt-4o-mini",
        max_tokens: int = 700,
        temperature: float = 0.7,
    ):
        self._client = OpenAI(api_key=api_key)
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature
        self.last_total_tokens: int | None = None

    def complete(self, prompt: str, system: str | None = None, **kwargs: Any) -> str:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        response = self._client.chat.completions.create(
            model=kwargs.pop("model", None) or self._model,
            messages=messages,
            max_tokens=kwargs.pop("max_tokens", self._max_tokens),
            temperature=kwargs.pop("temperature", self._temperature),
            **kwargs,
        )
        usage = getattr(response, "usage", None)
        self.last_total_tokens = getattr(usage, "total_tokens", None)
        msg = response.choices[0].message
        return (msg.content or "").strip()

    def complete_structured(
        self, prompt: str, schema: type[BaseModel], system: str | None = None, **kwargs: Any
    ) -> BaseModel:
        raw = self.complete(f"{prompt}\n\n{JSON_INSTRUCTION}", system=system, **kwargs)
        return parse_json_reply(raw, schema)
