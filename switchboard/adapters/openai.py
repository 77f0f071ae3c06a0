"""
OpenAI adapter — Chat Completions streaming.

Asks for `stream_options.include_usage`, so the last JSON chunk before
`[DONE]` carries a `usage` object (with an empty `choices` list).
"""

from __future__ import annotations

import logging
from contextlib import aclosing

from switchboard.adapters.base import BaseAdapter, ChatMessage, ModelConfig, StreamChunk
from switchboard.errors import ProviderError

logger = logging.getLogger(__name__)


class OpenAIAdapter(BaseAdapter):
    """Adapter for api.openai.com (and anything that speaks the same dialect)."""

    provider = "openai"

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.api_key}"}

    def _body(self, config: ModelConfig, messages: list[ChatMessage]) -> dict:
        history = [{"role": m.role, "content": m.content} for m in messages]
        if config.system_prompt:
            history.insert(0, {"role": "system", "content": config.system_prompt})
        body = {
            "model": config.model,
            "max_tokens": self._max_tokens(config),
            "stream": True,
            "stream_options": {"include_usage": True},
            "messages": history,
        }
        if config.temperature is not None:
            body["temperature"] = config.temperature
        return body

    async def stream(self, config: ModelConfig, messages: list[ChatMessage]):
        input_tokens = 0
        output_tokens = 0

        events = self._sse_events(
            f"{self.url}/chat/completions", self._body(config, messages), self._headers(),
        )
        async with aclosing(events):
            async for event in events:
                if event == "[DONE]":
                    yield StreamChunk.final(input_tokens, output_tokens)
                    return
                if not isinstance(event, dict):
                    continue

                if "error" in event:
                    err = event["error"]
                    message = err.get("message", "") if isinstance(err, dict) else str(err)
                    raise ProviderError(f"OpenAI error: {message}", provider=self.provider)

                choices = event.get("choices") or []
                if choices:
                    text = (choices[0].get("delta") or {}).get("content")
                    if text:
                        yield StreamChunk.delta(text)

                usage = event.get("usage")
                if usage:
                    input_tokens = usage.get("prompt_tokens") or 0
                    output_tokens = usage.get("completion_tokens") or 0

        raise self._incomplete()
