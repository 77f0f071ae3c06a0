"""
Transport sink — the push channel from a turn to its client.

Protocol per turn:
    send_delta()*  →  exactly one of send_terminal() / send_error()  →  close()

The base class enforces the ordering; subclasses only decide where frames go.
SSESink hands frames to the HTTP response through a bounded queue, so a slow
client back-pressures the orchestrator (and through it, the provider read).
"""

from __future__ import annotations

import abc
import asyncio
import json
import logging
from typing import AsyncIterator

from switchboard.errors import SinkClosedError

logger = logging.getLogger(__name__)

_CLOSE = object()


def format_sse(frame: dict) -> str:
    """Encode one frame as an SSE data line."""
    return f"data: {json.dumps(frame)}\n\n"


class TransportSink(abc.ABC):
    """Ordered delta frames, one terminal-or-error frame, then close."""

    def __init__(self):
        self.finished = False
        self.closed = False

    @abc.abstractmethod
    async def _write(self, frame: dict):
        ...

    async def _close(self):
        """Release the channel. Default: nothing to release."""

    def _check_open(self, what: str):
        if self.closed:
            raise SinkClosedError(f"{what} after close")
        if self.finished:
            raise SinkClosedError(f"{what} after the turn ended")

    async def send_delta(self, text: str):
        self._check_open("delta")
        await self._write({"text": text})

    async def send_terminal(self, input_tokens: int, output_tokens: int, cost: int):
        self._check_open("terminal frame")
        self.finished = True
        await self._write({
            "done": True,
            "inputTokens": input_tokens,
            "outputTokens": output_tokens,
            "cost": cost,
        })

    async def send_error(self, message: str):
        self._check_open("error frame")
        self.finished = True
        await self._write({"error": message})

    async def close(self):
        if self.closed:
            return
        self.closed = True
        await self._close()


class SSESink(TransportSink):
    """
    Queue-backed sink read by a StreamingResponse.
    maxsize=1 keeps at most one frame waiting on the client.
    """

    def __init__(self, maxsize: int = 1):
        super().__init__()
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)

    async def _write(self, frame: dict):
        await self._queue.put(frame)

    async def _close(self):
        await self._queue.put(_CLOSE)

    async def frames(self) -> AsyncIterator[str]:
        """Yield SSE-encoded frames until the sink is closed."""
        while True:
            frame = await self._queue.get()
            if frame is _CLOSE:
                return
            yield format_sse(frame)
