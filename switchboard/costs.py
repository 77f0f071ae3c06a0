"""
Cost Tracking — know what you're spending, and check the books.

Reporting queries over assistant messages (costs in integer cents), plus an
audit that recomputes each conversation's aggregates by summation and
compares them to the incrementally-maintained counters.
"""

from __future__ import annotations

import logging

from switchboard.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)


class CostTracker:
    """Query, aggregate and reconcile usage data in the ledger."""

    def __init__(self, sqlite: SQLiteStore):
        self.sqlite = sqlite

    def get_stats(self, days: int = 30, user_id: str | None = None) -> dict:
        """
        Cost stats for a period, optionally for one user.

        Returns:
            {
                "total": 123,                       # cents
                "tokens": 45678,
                "by_model": {"gpt-4o": {"cost": 89, "tokens": 30000, "messages": 12}, ...},
                "by_day": {"2026-02-20": 5, ...},
                "days_queried": 30,
            }
        """
        where = "role = 'assistant' AND timestamp > datetime('now', ?)"
        params: list = [f"-{days} days"]
        if user_id:
            where += " AND user_id = ?"
            params.append(user_id)

        with self.sqlite._connect() as conn:
            row = conn.execute(
                f"SELECT COALESCE(SUM(cost), 0) AS cost, "
                f"COALESCE(SUM(input_tokens + output_tokens), 0) AS tokens "
                f"FROM messages WHERE {where}",
                params,
            ).fetchone()

            model_rows = conn.execute(
                f"SELECT model, COUNT(*) AS msg_count, COALESCE(SUM(cost), 0) AS cost, "
                f"COALESCE(SUM(input_tokens + output_tokens), 0) AS tokens "
                f"FROM messages WHERE {where} "
                f"GROUP BY model ORDER BY cost DESC",
                params,
            ).fetchall()
            by_model = {
                r["model"]: {"cost": r["cost"], "tokens": r["tokens"], "messages": r["msg_count"]}
                for r in model_rows
            }

            day_rows = conn.execute(
                f"SELECT DATE(timestamp) AS day, COALESCE(SUM(cost), 0) AS cost "
                f"FROM messages WHERE {where} "
                f"GROUP BY DATE(timestamp) ORDER BY day DESC",
                params,
            ).fetchall()
            by_day = {r["day"]: r["cost"] for r in day_rows}

        return {
            "total": row["cost"],
            "tokens": row["tokens"],
            "by_model": by_model,
            "by_day": by_day,
            "days_queried": days,
        }

    def audit(self) -> list[dict]:
        """
        Conversations whose stored aggregates disagree with the sum of their
        assistant messages. Empty list means the books balance.
        """
        with self.sqlite._connect() as conn:
            rows = conn.execute(
                """SELECT c.id, c.total_tokens, c.total_cost,
                          COALESCE(SUM(m.input_tokens + m.output_tokens), 0) AS summed_tokens,
                          COALESCE(SUM(m.cost), 0) AS summed_cost
                   FROM conversations c
                   LEFT JOIN messages m
                     ON m.conversation_id = c.id AND m.role = 'assistant'
                   GROUP BY c.id
                   HAVING c.total_tokens != summed_tokens OR c.total_cost != summed_cost"""
            ).fetchall()

        drift = [
            {
                "conversation_id": r["id"],
                "stored_tokens": r["total_tokens"],
                "summed_tokens": r["summed_tokens"],
                "stored_cost": r["total_cost"],
                "summed_cost": r["summed_cost"],
            }
            for r in rows
        ]
        if drift:
            logger.warning("Usage audit found %d conversation(s) out of balance", len(drift))
        return drift

    def repair(self, conversation_id: str) -> tuple[int, int]:
        """Rewrite a conversation's aggregates from its messages. Returns (tokens, cost)."""
        tokens, cost = self.sqlite.sum_assistant_usage(conversation_id)
        self.sqlite.set_conversation_usage(conversation_id, tokens, cost)
        logger.info("Repaired conversation %s aggregates → tokens=%d cost=%d", conversation_id, tokens, cost)
        return tokens, cost
