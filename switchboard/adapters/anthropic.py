"""
Anthropic adapter — Messages API with typed SSE events.

Usage arrives in two halves: input tokens on `message_start`, output tokens
(cumulative) on each `message_delta`. The stream is complete on `message_stop`.
"""

from __future__ import annotations

import logging
from contextlib import aclosing

from switchboard.adapters.base import BaseAdapter, ChatMessage, ModelConfig, StreamChunk
from switchboard.errors import ProviderError

logger = logging.getLogger(__name__)

API_VERSION = "2023-06-01"


class AnthropicAdapter(BaseAdapter):
    """Adapter for api.anthropic.com."""

    provider = "anthropic"

    def _headers(self) -> dict:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": API_VERSION,
            "content-type": "application/json",
        }

    def _body(self, config: ModelConfig, messages: list[ChatMessage]) -> dict:
        # System prompt travels separately; system-role history is dropped
        body = {
            "model": config.model,
            "max_tokens": self._max_tokens(config),
            "stream": True,
            "messages": [
                {"role": m.role, "content": m.content}
                for m in messages if m.role != "system"
            ],
        }
        if config.system_prompt:
            body["system"] = config.system_prompt
        if config.temperature is not None:
            body["temperature"] = config.temperature
        return body

    async def stream(self, config: ModelConfig, messages: list[ChatMessage]):
        input_tokens = 0
        output_tokens = 0

        events = self._sse_events(
            f"{self.url}/v1/messages", self._body(config, messages), self._headers(),
        )
        async with aclosing(events):
            async for event in events:
                if not isinstance(event, dict):
                    continue
                kind = event.get("type")

                if kind == "message_start":
                    usage = (event.get("message") or {}).get("usage") or {}
                    input_tokens = usage.get("input_tokens") or 0
                    output_tokens = usage.get("output_tokens") or output_tokens

                elif kind == "content_block_delta":
                    delta = event.get("delta") or {}
                    if delta.get("type") == "text_delta" and delta.get("text"):
                        yield StreamChunk.delta(delta["text"])

                elif kind == "message_delta":
                    usage = event.get("usage") or {}
                    if usage.get("output_tokens") is not None:
                        output_tokens = usage["output_tokens"]

                elif kind == "message_stop":
                    yield StreamChunk.final(input_tokens, output_tokens)
                    return

                elif kind == "error":
                    err = event.get("error") or {}
                    message = err.get("message") or err.get("type") or "unknown error"
                    logger.warning("Anthropic stream error event: %s", message)
                    raise ProviderError(f"Anthropic error: {message}", provider=self.provider)

        raise self._incomplete()
