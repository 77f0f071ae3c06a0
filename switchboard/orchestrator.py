"""
Turn orchestrator — one user message in, one streamed and accounted answer out.

    Validating → Persisting User Turn → Generating → Finalizing → Completed
                                              └───────────┴──────→ Failed

begin_turn() runs the synchronous half: request validation, ownership,
quota, adapter lookup, then the user-message write. Any failure there raises
before anything is persisted or streamed, so the API layer can answer with a
plain HTTP error.

stream_turn() runs the streaming half against a TransportSink. From here on
every outcome ends in exactly one terminal or error frame followed by close.
A failed generation persists nothing; text already flushed to the client
stays with the client.

Aggregates are bumped with commutative increments. The quota check is
read-then-act, so concurrent turns can overshoot a limit by one turn each.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import aclosing
from dataclasses import dataclass

from switchboard.adapters.base import BaseAdapter, ChatMessage, ModelConfig, StreamChunk
from switchboard.adapters.registry import AdapterRegistry
from switchboard.errors import (
    AuthorizationError,
    NotFoundError,
    ProviderError,
    QuotaExceededError,
    ValidationError,
)
from switchboard.pricing import PricingTable
from switchboard.sink import TransportSink
from switchboard.storage.models import Conversation, Message
from switchboard.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 50
TITLE_LENGTH = 60
FIRST_TURN_HISTORY = 2  # user + at most one seeded message
TURN_TIMEOUT = 300.0

COMPLETED = "completed"
FAILED = "failed"


def _context_messages(history: list[Message]) -> list[ChatMessage]:
    """
    Provider context from the history window. Error messages are skipped, and
    so are assistant messages ahead of the first user message: a truncated
    window can open mid-exchange, and Anthropic and Gemini reject a context
    that starts with the model's turn.
    """
    messages = [ChatMessage(m.role, m.content) for m in history if not m.is_error]
    first_user = next((i for i, m in enumerate(messages) if m.role == "user"), len(messages))
    return [m for i, m in enumerate(messages) if i >= first_user or m.role != "assistant"]


@dataclass
class Turn:
    """A validated turn whose user message is already persisted."""
    user_id: str
    conversation: Conversation
    adapter: BaseAdapter
    user_message: Message


@dataclass
class TurnResult:
    status: str
    text: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    cost: int = 0
    error: str = ""
    message_id: str = ""
    latency_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == COMPLETED


class TurnOrchestrator:
    """Drives turns between the ledger, the adapter registry and a sink."""

    def __init__(
        self,
        store: SQLiteStore,
        registry: AdapterRegistry,
        pricing: PricingTable | None = None,
        history_limit: int = HISTORY_LIMIT,
        title_length: int = TITLE_LENGTH,
        turn_timeout: float | None = TURN_TIMEOUT,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ):
        self.store = store
        self.registry = registry
        self.pricing = pricing or PricingTable()
        self.history_limit = history_limit
        self.title_length = title_length
        self.turn_timeout = turn_timeout
        self.max_tokens = max_tokens
        self.temperature = temperature

    @classmethod
    def from_config(cls, cfg: dict, store: SQLiteStore, registry: AdapterRegistry) -> "TurnOrchestrator":
        turn_cfg = cfg.get("turn", {}) or {}
        return cls(
            store=store,
            registry=registry,
            pricing=PricingTable(cfg.get("pricing") or {}),
            history_limit=turn_cfg.get("history_limit", HISTORY_LIMIT),
            title_length=turn_cfg.get("title_length", TITLE_LENGTH),
            turn_timeout=turn_cfg.get("timeout", TURN_TIMEOUT),
            max_tokens=turn_cfg.get("max_tokens"),
            temperature=turn_cfg.get("temperature"),
        )

    # ─ Validating + Persisting User Turn ──────────────────────────────────

    def begin_turn(
        self,
        user_id: str,
        conversation_id: str,
        text,
        attachments: list | None = None,
    ) -> Turn:
        """Check preconditions and durably record the user's message."""
        if not isinstance(text, str) or not text.strip():
            raise ValidationError("Message must be a non-empty string")
        if attachments is None:
            attachments = []
        if not isinstance(attachments, list) or not all(isinstance(a, dict) for a in attachments):
            raise ValidationError("Attachments must be a list of objects")

        conv = self.store.get_conversation(conversation_id)
        if conv is None:
            raise NotFoundError("Conversation not found")
        if conv.user_id != user_id:
            raise AuthorizationError("Conversation belongs to another user")

        user = self.store.get_user(user_id)
        if user is None or not user.is_active:
            raise AuthorizationError("Unknown or inactive user")
        if user.quota_reached():
            raise QuotaExceededError("Token limit exceeded. Contact admin.")

        adapter = self.registry.resolve(conv.provider)

        user_message = self.store.store_message(Message(
            conversation_id=conv.id,
            user_id=user_id,
            role="user",
            content=text,
            attachments=attachments,
        ))
        return Turn(user_id=user_id, conversation=conv, adapter=adapter, user_message=user_message)

    # ─ Generating + Finalizing ────────────────────────────────────────────

    async def stream_turn(self, turn: Turn, sink: TransportSink) -> TurnResult:
        """Generate, forward and account one turn. Always ends the sink."""
        conv = turn.conversation
        try:
            history = self.store.get_messages(conv.id, limit=self.history_limit)
        except Exception:
            logger.exception("Failed to load history for conv=%s", conv.id)
            return await self._fail(sink, conv, "Failed to load conversation history", [])
        first_turn = len(history) <= FIRST_TURN_HISTORY
        config = ModelConfig(
            provider=conv.provider,
            model=conv.model,
            system_prompt=conv.system_prompt,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        messages = _context_messages(history)

        logger.info(
            "Turn started: conv=%s provider=%s model=%s history=%d",
            conv.id, conv.provider, conv.model, len(messages),
        )
        t0 = time.monotonic()
        parts: list[str] = []

        try:
            final = await self._generate(turn.adapter, config, messages, sink, parts)
        except asyncio.CancelledError:
            logger.info("Turn cancelled: conv=%s after %d chunks", conv.id, len(parts))
            raise
        except ProviderError as e:
            return await self._fail(sink, conv, str(e), parts)
        except Exception as e:
            logger.exception("Unexpected failure while generating for conv=%s", conv.id)
            return await self._fail(sink, conv, f"Generation failed: {e}", parts)

        text = "".join(parts)
        try:
            result = self._finalize(turn, first_turn, text, final)
        except Exception:
            logger.exception("Failed to record assistant message for conv=%s", conv.id)
            return await self._fail(sink, conv, "Failed to record response", parts)

        result.latency_ms = round((time.monotonic() - t0) * 1000, 1)
        await sink.send_terminal(result.input_tokens, result.output_tokens, result.cost)
        await sink.close()
        logger.info(
            "Turn completed: conv=%s tokens=%d+%d cost=%d latency=%.0fms",
            conv.id, result.input_tokens, result.output_tokens, result.cost, result.latency_ms,
        )
        return result

    async def run_turn(
        self,
        user_id: str,
        conversation_id: str,
        text,
        sink: TransportSink,
        attachments: list | None = None,
    ) -> TurnResult:
        """begin_turn() then stream_turn(). Precondition errors propagate."""
        turn = self.begin_turn(user_id, conversation_id, text, attachments)
        return await self.stream_turn(turn, sink)

    async def _generate(
        self,
        adapter: BaseAdapter,
        config: ModelConfig,
        messages: list[ChatMessage],
        sink: TransportSink,
        parts: list[str],
    ) -> StreamChunk:
        """Pull chunks one at a time, forwarding each delta immediately."""
        stream = adapter.stream(config, messages)
        try:
            async with aclosing(stream), asyncio.timeout(self.turn_timeout):
                async for chunk in stream:
                    if chunk.done:
                        return chunk
                    parts.append(chunk.text)
                    await sink.send_delta(chunk.text)
        except TimeoutError:
            raise ProviderError(
                f"Turn timed out after {self.turn_timeout}s", provider=config.provider,
            )
        raise ProviderError("Stream ended without a terminal chunk", provider=config.provider)

    def _finalize(self, turn: Turn, first_turn: bool, text: str, final: StreamChunk) -> TurnResult:
        conv = turn.conversation
        cost = self.pricing.cost(conv.model, final.input_tokens, final.output_tokens)
        tokens = final.input_tokens + final.output_tokens

        assistant = self.store.store_message(Message(
            conversation_id=conv.id,
            user_id=turn.user_id,
            role="assistant",
            content=text,
            model=conv.model,
            provider=conv.provider,
            input_tokens=final.input_tokens,
            output_tokens=final.output_tokens,
            cost=cost,
        ))
        self.store.increment_conversation_usage(conv.id, tokens, cost)
        self.store.increment_user_usage(turn.user_id, tokens, cost)
        if first_turn:
            self.store.set_title(conv.id, turn.user_message.content[: self.title_length])

        return TurnResult(
            status=COMPLETED,
            text=text,
            input_tokens=final.input_tokens,
            output_tokens=final.output_tokens,
            cost=cost,
            message_id=assistant.id,
        )

    async def _fail(self, sink: TransportSink, conv: Conversation, message: str, parts: list[str]) -> TurnResult:
        logger.warning("Turn failed: conv=%s after %d chunks: %s", conv.id, len(parts), message)
        if not (sink.finished or sink.closed):
            await sink.send_error(message)
        await sink.close()
        return TurnResult(status=FAILED, text="".join(parts), error=message)
