"""Durable storage for identities, channels and messages."""
from .base import DurableStore
from .duckdb_store import DuckDBStore
from .schemas import Attachment, ChannelRecord, IdentityRecord, MessageRecord

__all__ = [
    "DurableStore",
    "DuckDBStore",
    "Attachment",
    "ChannelRecord",
    "IdentityRecord",
    "MessageRecord",
]
