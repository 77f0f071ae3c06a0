"""
Shared fixtures: a temp ledger, a recording sink, and a scriptable adapter.
"""

import asyncio

import pytest

from switchboard.adapters.base import BaseAdapter, StreamChunk
from switchboard.adapters.registry import AdapterRegistry
from switchboard.sink import TransportSink
from switchboard.storage.models import Conversation, User
from switchboard.storage.sqlite_store import SQLiteStore


class RecordingSink(TransportSink):
    """Keeps every frame (and the close) in order."""

    def __init__(self):
        super().__init__()
        self.frames: list[dict] = []
        self.events: list[str] = []
        self.first_frame = asyncio.Event()

    async def _write(self, frame: dict):
        self.frames.append(frame)
        self.events.append("error" if "error" in frame else "done" if frame.get("done") else "delta")
        self.first_frame.set()

    async def _close(self):
        self.events.append("close")

    @property
    def deltas(self) -> list[str]:
        return [f["text"] for f in self.frames if "text" in f]


class FakeAdapter(BaseAdapter):
    """
    Yields the given chunks, then optionally raises `error`,
    or hangs forever when `hang` is set.
    """

    provider = "fake"
    requires_api_key = False

    def __init__(self, chunks=None, error: Exception | None = None, hang: bool = False, on_call=None):
        super().__init__(url="http://fake")
        self.chunks = list(chunks or [])
        self.error = error
        self.hang = hang
        self.on_call = on_call
        self.calls: list = []
        self.closed = False

    async def stream(self, config, messages):
        self.calls.append((config, list(messages)))
        if self.on_call:
            self.on_call()
        try:
            for chunk in self.chunks:
                yield chunk
            if self.error:
                raise self.error
            if self.hang:
                await asyncio.sleep(3600)
        finally:
            self.closed = True


def completed(*texts, input_tokens=0, output_tokens=0) -> list[StreamChunk]:
    """Deltas for each text followed by a terminal chunk."""
    return [StreamChunk.delta(t) for t in texts] + [StreamChunk.final(input_tokens, output_tokens)]


@pytest.fixture
def store(tmp_path):
    """Create a fresh ledger for each test."""
    return SQLiteStore(str(tmp_path / "test.db"))


@pytest.fixture
def user(store):
    return store.create_user(User(id="u1", email="ada@example.com", name="Ada"))


@pytest.fixture
def conversation(store, user):
    return store.create_conversation(Conversation(
        id="c1", user_id=user.id, provider="fake", model="test-model",
        system_prompt="Be brief.",
    ))


@pytest.fixture
def sink():
    return RecordingSink()


def registry_with(adapter: BaseAdapter) -> AdapterRegistry:
    return AdapterRegistry({"fake": adapter})
