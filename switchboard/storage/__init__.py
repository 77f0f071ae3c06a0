"""
Conversation ledger: dataclass models and the SQLite store.
"""
from switchboard.storage.models import Conversation, Message, User
from switchboard.storage.sqlite_store import SQLiteStore

__all__ = ["Conversation", "Message", "User", "SQLiteStore"]
