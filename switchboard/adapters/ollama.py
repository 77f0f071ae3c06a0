"""
Ollama adapter — local inference via the native `/api/chat` endpoint.

The body is newline-delimited JSON. Only the record with `done: true`
carries usage (`prompt_eval_count`, `eval_count`). No API key needed.
"""

from __future__ import annotations

import logging
from contextlib import aclosing

from switchboard.adapters.base import BaseAdapter, ChatMessage, ModelConfig, StreamChunk
from switchboard.errors import ProviderError

logger = logging.getLogger(__name__)


class OllamaAdapter(BaseAdapter):
    """Adapter for local Ollama instances."""

    provider = "ollama"
    requires_api_key = False

    def _body(self, config: ModelConfig, messages: list[ChatMessage]) -> dict:
        history = [{"role": m.role, "content": m.content} for m in messages]
        if config.system_prompt:
            history.insert(0, {"role": "system", "content": config.system_prompt})
        options = {}
        if config.max_tokens:
            options["num_predict"] = config.max_tokens
        if config.temperature is not None:
            options["temperature"] = config.temperature
        body = {"model": config.model, "messages": history, "stream": True}
        if options:
            body["options"] = options
        return body

    async def stream(self, config: ModelConfig, messages: list[ChatMessage]):
        lines = self._stream_lines(f"{self.url}/api/chat", self._body(config, messages))
        async with aclosing(lines):
            async for line in lines:
                record = self._decode(line)
                if record.get("error"):
                    raise ProviderError(f"Ollama error: {record['error']}", provider=self.provider)

                text = (record.get("message") or {}).get("content")
                if text:
                    yield StreamChunk.delta(text)

                if record.get("done"):
                    yield StreamChunk.final(
                        record.get("prompt_eval_count") or 0,
                        record.get("eval_count") or 0,
                    )
                    return

        raise self._incomplete()
