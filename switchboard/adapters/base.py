"""
Base adapter abstraction.
All provider adapters implement this interface so the orchestrator can drive
them uniformly: one ModelConfig + history in, an async stream of StreamChunk out.
"""

from __future__ import annotations

import abc
import json
import logging
from contextlib import aclosing
from dataclasses import dataclass
from typing import AsyncIterator

import httpx

from switchboard.errors import ProviderError

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 4096


@dataclass(frozen=True)
class ChatMessage:
    role: str      # "user", "assistant", "system"
    content: str


@dataclass(frozen=True)
class ModelConfig:
    """Per-turn generation settings, built from the conversation."""
    provider: str
    model: str
    system_prompt: str = ""
    max_tokens: int | None = None
    temperature: float | None = None


@dataclass(frozen=True)
class StreamChunk:
    """
    Canonical streaming unit. Either a text delta (done=False, text non-empty)
    or the single terminal record (done=True) carrying final usage.
    """
    text: str = ""
    done: bool = False
    input_tokens: int = 0
    output_tokens: int = 0

    @classmethod
    def delta(cls, text: str) -> "StreamChunk":
        if not text:
            raise ValueError("delta chunks must carry text")
        return cls(text=text)

    @classmethod
    def final(cls, input_tokens: int = 0, output_tokens: int = 0) -> "StreamChunk":
        return cls(done=True, input_tokens=input_tokens or 0, output_tokens=output_tokens or 0)


class BaseAdapter(abc.ABC):
    """
    Abstract base for provider adapters.
    Each adapter knows its provider's request shape and stream framing.
    """

    provider = ""
    requires_api_key = True

    def __init__(
        self,
        url: str,
        api_key: str = "",
        timeout: float = 120,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ):
        self.url = url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.max_tokens = max_tokens

    @property
    def configured(self) -> bool:
        """Whether this adapter has what it needs to make a call."""
        if not self.url:
            return False
        return bool(self.api_key) or not self.requires_api_key

    @abc.abstractmethod
    def stream(self, config: ModelConfig, messages: list[ChatMessage]) -> AsyncIterator[StreamChunk]:
        """
        Stream a completion.
        Yields zero or more deltas then exactly one terminal chunk.
        Raises ProviderError at the point of failure.
        """
        ...

    def _max_tokens(self, config: ModelConfig) -> int:
        return config.max_tokens or self.max_tokens

    async def _stream_lines(self, url: str, body: dict, headers: dict | None = None) -> AsyncIterator[str]:
        """
        POST `body` and yield the non-empty response lines.
        Transport and HTTP failures become ProviderError. Cancellation is
        left alone so it closes the underlying connection.
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                async with client.stream("POST", url, json=body, headers=headers or {}) as resp:
                    if resp.status_code >= 400:
                        detail = (await resp.aread())[:200].decode("utf-8", "replace")
                        raise ProviderError(
                            f"HTTP {resp.status_code}: {detail}", provider=self.provider,
                        )
                    async for line in resp.aiter_lines():
                        if line:
                            yield line
        except httpx.TimeoutException:
            logger.warning("%s stream timed out after %ss", self.provider, self.timeout)
            raise ProviderError(f"Timeout after {self.timeout}s", provider=self.provider)
        except httpx.HTTPError as e:
            logger.warning("%s stream failed: %s", self.provider, e)
            raise ProviderError(str(e) or e.__class__.__name__, provider=self.provider) from e

    async def _sse_events(self, url: str, body: dict, headers: dict | None = None) -> AsyncIterator[dict | str]:
        """
        Yield SSE `data:` payloads, JSON-decoded where possible.
        Non-JSON payloads (e.g. "[DONE]") are yielded as stripped strings.
        `event:` lines and `:` keep-alive comments are skipped.
        """
        lines = self._stream_lines(url, body, headers)
        async with aclosing(lines):
            async for line in lines:
                if not line.startswith("data:"):
                    continue
                payload = line[5:].strip()
                if not payload:
                    continue
                if payload.startswith("{"):
                    yield self._decode(payload)
                else:
                    yield payload

    def _decode(self, payload: str) -> dict:
        try:
            return json.loads(payload)
        except json.JSONDecodeError as e:
            raise ProviderError(f"Malformed stream payload: {e}", provider=self.provider) from e

    def _incomplete(self) -> ProviderError:
        logger.warning("%s stream ended without a completion marker", self.provider)
        return ProviderError("Stream ended before completion", provider=self.provider)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} url={self.url!r} configured={self.configured}>"
