"""Abstract durable store.

The realtime core only depends on this interface. The shipped
implementation is DuckDB-backed (``DuckDBStore``); the interface is kept
narrow so another engine can be swapped in without touching callers.

Every method is synchronous and atomic for a single record: create, read and
delete either fully happen or raise.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from .schemas import Attachment, ChannelRecord, IdentityRecord, MessageRecord


class DurableStore(ABC):
    """Persistence operations consumed by the chat service."""

    # -- identities ---------------------------------------------------------

    @abstractmethod
    def create_identity(
        self,
        username: str,
        display_name: str,
        password_hash: str,
        avatar_url: Optional[str] = None,
    ) -> IdentityRecord:
        """Create a user. Raises ConflictError if the username is taken."""

    @abstractmethod
    def find_identity(self, identity_id: str) -> Optional[IdentityRecord]:
        """Look up a user by id (used for sender enrichment)."""

    @abstractmethod
    def find_identity_by_username(self, username: str) -> Optional[IdentityRecord]:
        """Look up a user by (lowercase) username."""

    # -- channels -----------------------------------------------------------

    @abstractmethod
    def create_channel(
        self,
        name: str,
        created_by: str,
        description: str = "",
        is_private: bool = False,
    ) -> ChannelRecord:
        """Create a channel with its creator as the first member.

        Raises ConflictError if the name is taken.
        """

    @abstractmethod
    def find_channel_by_id(self, channel_id: str) -> Optional[ChannelRecord]:
        """Return the channel with its member list, or None."""

    @abstractmethod
    def find_channel_by_name(self, name: str) -> Optional[ChannelRecord]:
        """Return the channel with this exact name, or None."""

    @abstractmethod
    def list_channels(self) -> List[ChannelRecord]:
        """All channels, oldest first."""

    @abstractmethod
    def add_channel_member(self, channel_id: str, identity_id: str) -> ChannelRecord:
        """Add a persisted member (no duplicates). Raises NotFoundError."""

    @abstractmethod
    def remove_channel_member(self, channel_id: str, identity_id: str) -> ChannelRecord:
        """Remove a persisted member if present. Raises NotFoundError."""

    # -- messages -----------------------------------------------------------

    @abstractmethod
    def create_message(
        self,
        channel_id: str,
        sender_id: str,
        text: str,
        attachments: Optional[List[Attachment]] = None,
    ) -> MessageRecord:
        """Persist a new message.

        Creation timestamps are strictly increasing across the store so a
        strictly-before cursor never skips a message.
        """

    @abstractmethod
    def find_message_by_id(self, message_id: str) -> Optional[MessageRecord]:
        """Return a single message or None."""

    @abstractmethod
    def find_messages_by_channel(
        self,
        channel_id: str,
        before: Optional[datetime] = None,
        limit: int = 20,
    ) -> List[MessageRecord]:
        """Return up to ``limit`` messages, newest first.

        Args:
            channel_id: Channel to read.
            before: Exclusive upper bound on ``created_at``. None means
                start from the newest message.
            limit: Maximum rows to return.
        """

    @abstractmethod
    def delete_message(self, message_id: str) -> bool:
        """Delete a message. Returns False if it did not exist."""

    # -- lifecycle ----------------------------------------------------------

    def close(self) -> None:
        """Release underlying resources. Default: nothing to release."""
