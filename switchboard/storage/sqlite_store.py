"""
SQLite ledger for users, conversations and messages.
This is the source of truth for usage accounting: every message, every token,
every cent. Aggregates are kept by increment and can be rebuilt by summation.
"""

import sqlite3
import json
import logging
from pathlib import Path
from contextlib import contextmanager
from datetime import datetime, timezone

from switchboard.storage.models import Conversation, Message, User

logger = logging.getLogger(__name__)

CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    email TEXT NOT NULL DEFAULT '',
    name TEXT NOT NULL DEFAULT '',
    role TEXT NOT NULL DEFAULT 'user',
    is_active INTEGER NOT NULL DEFAULT 1,
    token_limit INTEGER DEFAULT NULL,
    total_tokens_used INTEGER NOT NULL DEFAULT 0,
    total_cost INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    title TEXT NOT NULL DEFAULT 'New Chat',
    provider TEXT NOT NULL,
    model TEXT NOT NULL,
    system_prompt TEXT NOT NULL DEFAULT '',
    is_pinned INTEGER NOT NULL DEFAULT 0,
    is_archived INTEGER NOT NULL DEFAULT 0,
    total_tokens INTEGER NOT NULL DEFAULT 0,
    total_cost INTEGER NOT NULL DEFAULT 0,
    tags TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (user_id) REFERENCES users(id)
);

CREATE TABLE IF NOT EXISTS messages (
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL,
    user_id TEXT NOT NULL DEFAULT '',
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    model TEXT DEFAULT '',
    provider TEXT DEFAULT '',
    input_tokens INTEGER NOT NULL DEFAULT 0,
    output_tokens INTEGER NOT NULL DEFAULT 0,
    cost INTEGER NOT NULL DEFAULT 0,
    attachments TEXT NOT NULL DEFAULT '[]',
    is_error INTEGER NOT NULL DEFAULT 0,
    error_message TEXT DEFAULT '',
    timestamp TEXT NOT NULL,
    FOREIGN KEY (conversation_id) REFERENCES conversations(id)
);

CREATE INDEX IF NOT EXISTS idx_conversations_user
    ON conversations(user_id);
CREATE INDEX IF NOT EXISTS idx_messages_conversation
    ON messages(conversation_id, timestamp);
CREATE INDEX IF NOT EXISTS idx_messages_role
    ON messages(role);
"""

# Fields update_conversation() may touch
UPDATABLE_FIELDS = ("title", "system_prompt", "is_pinned", "is_archived", "tags")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_user(row) -> User:
    return User(
        id=row["id"],
        email=row["email"],
        name=row["name"],
        role=row["role"],
        is_active=bool(row["is_active"]),
        token_limit=row["token_limit"],
        total_tokens_used=row["total_tokens_used"],
        total_cost=row["total_cost"],
        created_at=row["created_at"],
    )


def _row_to_conversation(row) -> Conversation:
    return Conversation(
        id=row["id"],
        user_id=row["user_id"],
        title=row["title"],
        provider=row["provider"],
        model=row["model"],
        system_prompt=row["system_prompt"],
        is_pinned=bool(row["is_pinned"]),
        is_archived=bool(row["is_archived"]),
        total_tokens=row["total_tokens"],
        total_cost=row["total_cost"],
        tags=json.loads(row["tags"] or "[]"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_message(row) -> Message:
    return Message(
        id=row["id"],
        conversation_id=row["conversation_id"],
        user_id=row["user_id"],
        role=row["role"],
        content=row["content"],
        model=row["model"] or "",
        provider=row["provider"] or "",
        input_tokens=row["input_tokens"],
        output_tokens=row["output_tokens"],
        cost=row["cost"],
        attachments=json.loads(row["attachments"] or "[]"),
        is_error=bool(row["is_error"]),
        error_message=row["error_message"] or "",
        timestamp=row["timestamp"],
    )


class SQLiteStore:
    """Thread-safe SQLite ledger. One connection per operation."""

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self):
        with self._connect() as conn:
            conn.executescript(CREATE_TABLES)
        logger.info("SQLite store initialized at %s", self.db_path)

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # ─ Users ──────────────────────────────────────────────────────────────

    def create_user(self, user: User) -> User:
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO users
                   (id, email, name, role, is_active, token_limit,
                    total_tokens_used, total_cost, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (user.id, user.email, user.name, user.role, int(user.is_active),
                 user.token_limit, user.total_tokens_used, user.total_cost,
                 user.created_at),
            )
        logger.debug("Created user %s", user.id)
        return user

    def get_user(self, user_id: str) -> User | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return _row_to_user(row) if row else None

    def increment_user_usage(self, user_id: str, tokens: int, cost: int):
        """Add to the user's running totals (commutative, no read-back)."""
        with self._connect() as conn:
            conn.execute(
                """UPDATE users
                   SET total_tokens_used = total_tokens_used + ?,
                       total_cost = total_cost + ?
                   WHERE id = ?""",
                (tokens, cost, user_id),
            )

    def get_user_stats(self, user_id: str) -> dict | None:
        """Usage summary for one user."""
        user = self.get_user(user_id)
        if user is None:
            return None
        with self._connect() as conn:
            conv_count = conn.execute(
                "SELECT COUNT(*) FROM conversations WHERE user_id = ? AND is_archived = 0",
                (user_id,),
            ).fetchone()[0]
            msg_count = conn.execute(
                "SELECT COUNT(*) FROM messages WHERE user_id = ? AND role = 'assistant'",
                (user_id,),
            ).fetchone()[0]
        return {
            "total_tokens_used": user.total_tokens_used,
            "total_cost": user.total_cost,
            "token_limit": user.token_limit,
            "conversation_count": conv_count,
            "message_count": msg_count,
        }

    # ─ Conversations ──────────────────────────────────────────────────────

    def create_conversation(self, conv: Conversation) -> Conversation:
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO conversations
                   (id, user_id, title, provider, model, system_prompt, is_pinned,
                    is_archived, total_tokens, total_cost, tags, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (conv.id, conv.user_id, conv.title, conv.provider, conv.model,
                 conv.system_prompt, int(conv.is_pinned), int(conv.is_archived),
                 conv.total_tokens, conv.total_cost, json.dumps(conv.tags),
                 conv.created_at, conv.updated_at),
            )
        logger.debug("Created conversation %s (%s/%s)", conv.id, conv.provider, conv.model)
        return conv

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM conversations WHERE id = ?", (conversation_id,)
            ).fetchone()
        return _row_to_conversation(row) if row else None

    def list_conversations(self, user_id: str) -> list[Conversation]:
        """Non-archived conversations, pinned first, then most recently updated."""
        with self._connect() as conn:
            rows = conn.execute(
                """SELECT * FROM conversations
                   WHERE user_id = ? AND is_archived = 0
                   ORDER BY is_pinned DESC, updated_at DESC""",
                (user_id,),
            ).fetchall()
        return [_row_to_conversation(r) for r in rows]

    def update_conversation(self, conversation_id: str, **fields) -> Conversation | None:
        """Update management fields. Unknown fields raise ValueError."""
        unknown = set(fields) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update conversation fields: {', '.join(sorted(unknown))}")
        if fields:
            values = []
            for key in fields:
                value = fields[key]
                if key == "tags":
                    value = json.dumps(list(value))
                elif key in ("is_pinned", "is_archived"):
                    value = int(bool(value))
                values.append(value)
            assignments = ", ".join(f"{key} = ?" for key in fields)
            with self._connect() as conn:
                conn.execute(
                    f"UPDATE conversations SET {assignments}, updated_at = ? WHERE id = ?",
                    (*values, _now(), conversation_id),
                )
        return self.get_conversation(conversation_id)

    def set_title(self, conversation_id: str, title: str):
        with self._connect() as conn:
            conn.execute(
                "UPDATE conversations SET title = ?, updated_at = ? WHERE id = ?",
                (title, _now(), conversation_id),
            )

    def increment_conversation_usage(self, conversation_id: str, tokens: int, cost: int):
        """Add to the conversation's running totals (commutative, no read-back)."""
        with self._connect() as conn:
            conn.execute(
                """UPDATE conversations
                   SET total_tokens = total_tokens + ?,
                       total_cost = total_cost + ?,
                       updated_at = ?
                   WHERE id = ?""",
                (tokens, cost, _now(), conversation_id),
            )

    def set_conversation_usage(self, conversation_id: str, tokens: int, cost: int):
        """Overwrite the running totals. Used only by the audit repair path."""
        with self._connect() as conn:
            conn.execute(
                "UPDATE conversations SET total_tokens = ?, total_cost = ? WHERE id = ?",
                (tokens, cost, conversation_id),
            )

    def delete_conversation(self, conversation_id: str) -> bool:
        """Delete a conversation and all of its messages."""
        with self._connect() as conn:
            conn.execute("DELETE FROM messages WHERE conversation_id = ?", (conversation_id,))
            cur = conn.execute("DELETE FROM conversations WHERE id = ?", (conversation_id,))
            deleted = cur.rowcount > 0
        if deleted:
            logger.info("Deleted conversation %s", conversation_id)
        return deleted

    # ─ Messages ───────────────────────────────────────────────────────────

    def store_message(self, msg: Message) -> Message:
        """Insert a message. Messages are immutable, so this never replaces."""
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO messages
                   (id, conversation_id, user_id, role, content, model, provider,
                    input_tokens, output_tokens, cost, attachments, is_error,
                    error_message, timestamp)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (msg.id, msg.conversation_id, msg.user_id, msg.role, msg.content,
                 msg.model, msg.provider, msg.input_tokens, msg.output_tokens,
                 msg.cost, json.dumps(msg.attachments), int(msg.is_error),
                 msg.error_message, msg.timestamp),
            )
        logger.debug("Stored message %s (role=%s, conv=%s)", msg.id, msg.role, msg.conversation_id)
        return msg

    def get_messages(self, conversation_id: str, limit: int | None = None) -> list[Message]:
        """
        Messages of a conversation in append order.
        With a limit, the most recent `limit` messages (still oldest first).
        """
        with self._connect() as conn:
            if limit is None:
                rows = conn.execute(
                    """SELECT * FROM messages WHERE conversation_id = ?
                       ORDER BY timestamp, rowid""",
                    (conversation_id,),
                ).fetchall()
            else:
                rows = conn.execute(
                    """SELECT * FROM (
                           SELECT *, rowid AS seq FROM messages WHERE conversation_id = ?
                           ORDER BY timestamp DESC, rowid DESC LIMIT ?
                       ) ORDER BY timestamp, seq""",
                    (conversation_id, limit),
                ).fetchall()
        return [_row_to_message(r) for r in rows]

    def sum_assistant_usage(self, conversation_id: str) -> tuple[int, int]:
        """(tokens, cost) summed over a conversation's assistant messages."""
        with self._connect() as conn:
            row = conn.execute(
                """SELECT COALESCE(SUM(input_tokens + output_tokens), 0) AS tokens,
                          COALESCE(SUM(cost), 0) AS cost
                   FROM messages
                   WHERE conversation_id = ? AND role = 'assistant'""",
                (conversation_id,),
            ).fetchone()
        return row["tokens"], row["cost"]
