"""
Google adapter — Gemini `streamGenerateContent` over SSE.

Gemini has no end-of-stream sentinel: the response is complete once a
candidate reports a `finishReason` and the body is drained. Usage metadata
rides along on chunks but is only final once the stream is exhausted, so it
is read from the drained response rather than trusted mid-stream.
"""

from __future__ import annotations

import logging
from contextlib import aclosing

from switchboard.adapters.base import BaseAdapter, ChatMessage, ModelConfig, StreamChunk
from switchboard.errors import ProviderError

logger = logging.getLogger(__name__)

# finishReason values that mean the model refused or was cut off by policy
BLOCKED_REASONS = {"SAFETY", "RECITATION", "BLOCKLIST", "PROHIBITED_CONTENT", "SPII"}


class _DrainedResponse:
    """Collects what Gemini tells us along the way; read it after draining."""

    def __init__(self):
        self.finish_reason = ""
        self.usage: dict = {}

    def absorb(self, event: dict):
        candidates = event.get("candidates") or []
        if candidates and candidates[0].get("finishReason"):
            self.finish_reason = candidates[0]["finishReason"]
        if event.get("usageMetadata"):
            self.usage = event["usageMetadata"]

    @property
    def input_tokens(self) -> int:
        return self.usage.get("promptTokenCount") or 0

    @property
    def output_tokens(self) -> int:
        return self.usage.get("candidatesTokenCount") or 0


class GoogleAdapter(BaseAdapter):
    """Adapter for generativelanguage.googleapis.com."""

    provider = "google"

    def _headers(self) -> dict:
        return {"x-goog-api-key": self.api_key}

    def _body(self, config: ModelConfig, messages: list[ChatMessage]) -> dict:
        contents = [
            {
                "role": "model" if m.role == "assistant" else "user",
                "parts": [{"text": m.content}],
            }
            for m in messages if m.role != "system"
        ]
        generation = {"maxOutputTokens": self._max_tokens(config)}
        if config.temperature is not None:
            generation["temperature"] = config.temperature
        body = {"contents": contents, "generationConfig": generation}
        if config.system_prompt:
            body["systemInstruction"] = {"parts": [{"text": config.system_prompt}]}
        return body

    @staticmethod
    def _text_of(event: dict) -> str:
        candidates = event.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(p.get("text", "") for p in parts if not p.get("thought"))

    async def stream(self, config: ModelConfig, messages: list[ChatMessage]):
        url = f"{self.url}/v1beta/models/{config.model}:streamGenerateContent?alt=sse"
        response = _DrainedResponse()

        events = self._sse_events(url, self._body(config, messages), self._headers())
        async with aclosing(events):
            async for event in events:
                if not isinstance(event, dict):
                    continue
                if "error" in event:
                    err = event["error"]
                    message = err.get("message", "") if isinstance(err, dict) else str(err)
                    raise ProviderError(f"Google error: {message}", provider=self.provider)

                block = (event.get("promptFeedback") or {}).get("blockReason")
                if block:
                    raise ProviderError(f"Prompt blocked: {block}", provider=self.provider)

                text = self._text_of(event)
                if text:
                    yield StreamChunk.delta(text)
                response.absorb(event)

        if not response.finish_reason:
            raise self._incomplete()
        if response.finish_reason in BLOCKED_REASONS:
            logger.warning("Gemini stopped generation: %s", response.finish_reason)
        yield StreamChunk.final(response.input_tokens, response.output_tokens)
