"""Anthropic messages API with JSON-in-prompt structured output."""

from typing import Any

from anthropic import Anthropic
from pydantic import BaseModel

from artimport.llm.base import JSON_INSTRUCTION, parse_json_reply


class AnthropicProvider:
    """Anthropic chat completion with optional structured (JSON) output."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "claude-3-5-sonnet-20241022",
        max_tokens: int = 700,
        temperature: float = 0.7,
    ):
        self._client = Anthropic(api_key=api_key)
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature
        self.last_total_tokens: int | None = None

    def complete(self, prompt: str, system: str | None = None, **kwargs: Any) -> str:
        params: dict[str, Any] = {
            "model": kwargs.get("model") or self._model,
            "max_tokens": kwargs.get("max_tokens", self._max_tokens),
            "temperature": kwargs.get("temperature", self._temperature),
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            params["system"] = system
        response = self._client.messages.create(**params)
        usage = getattr(response, "usage", None)
        if usage is not None:
            self.last_total_tokens = (usage.input_tokens or 0) + (usage.output_tokens or 0)
        else:
            self.last_total_tokens = None
        return response.content[0].text.strip() if response.content else ""

    def complete_structured(
        self, prompt: str, schema: type[BaseModel], system: str | None = None, **kwargs: Any
    ) -> BaseModel:
        raw = self.complete(f"{prompt}\n\n{JSON_INSTRUCTION}", system=system, **kwargs)
        return parse_json_reply(raw, schema)
