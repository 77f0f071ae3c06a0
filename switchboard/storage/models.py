"""
Data models for the conversation ledger.
These define the shape of data flowing between the store and the orchestrator.
Costs are integer US cents throughout.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import uuid4


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class User:
    """An account as far as the gateway cares: limits and running totals."""
    id: str = field(default_factory=lambda: uuid4().hex)
    email: str = ""
    name: str = ""
    role: str = "user"           # "admin" | "user"
    is_active: bool = True
    token_limit: int | None = None  # None = unlimited
    total_tokens_used: int = 0
    total_cost: int = 0
    created_at: str = field(default_factory=_now)

    def quota_reached(self) -> bool:
        if self.token_limit is None:
            return False
        return self.total_tokens_used >= self.token_limit


@dataclass
class Conversation:
    """A chat thread bound to one provider/model pair."""
    id: str = field(default_factory=lambda: uuid4().hex)
    user_id: str = ""
    title: str = "New Chat"
    provider: str = ""           # "anthropic" | "openai" | "google" | "ollama"
    model: str = ""
    system_prompt: str = ""
    is_pinned: bool = False
    is_archived: bool = False
    total_tokens: int = 0
    total_cost: int = 0
    tags: list[str] = field(default_factory=list)
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "provider": self.provider,
            "model": self.model,
            "system_prompt": self.system_prompt,
            "is_pinned": self.is_pinned,
            "is_archived": self.is_archived,
            "total_tokens": self.total_tokens,
            "total_cost": self.total_cost,
            "tags": list(self.tags),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class Message:
    """A single message in a conversation. Never edited after insert."""
    id: str = field(default_factory=lambda: uuid4().hex)
    conversation_id: str = ""
    user_id: str = ""
    role: str = ""               # "user", "assistant", "system"
    content: str = ""
    model: str = ""              # assistant messages only
    provider: str = ""           # assistant messages only
    input_tokens: int = 0
    output_tokens: int = 0
    cost: int = 0
    attachments: list[dict] = field(default_factory=list)
    is_error: bool = False
    error_message: str = ""
    timestamp: str = field(default_factory=_now)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "role": self.role,
            "content": self.content,
            "model": self.model,
            "provider": self.provider,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "cost": self.cost,
            "attachments": list(self.attachments),
            "is_error": self.is_error,
            "error_message": self.error_message,
            "timestamp": self.timestamp,
        }
