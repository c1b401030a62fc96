"""Record types persisted by the durable store.

These are the stored shapes, not the wire shapes. Wire records (for example
the enriched message broadcast to a room) are built from them by pure
transformations in ``app.chat.schemas``.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class Attachment(BaseModel):
    """File reference attached to a message."""
    filename: str
    url: str
    mimeType: Optional[str] = None


class IdentityRecord(BaseModel):
    """A registered user.

    Attributes:
        id: Opaque identity id; the value carried in bearer tokens.
        username: Unique login name, stored lowercase.
        display_name: Name shown next to messages.
        avatar_url: Optional avatar image URL.
        password_hash: bcrypt hash; never serialized to clients.
        created_at: Registration time (UTC).
    """
    id: str
    username: str
    display_name: str
    avatar_url: Optional[str] = None
    password_hash: str = Field(default="", exclude=True, repr=False)
    created_at: datetime


class ChannelRecord(BaseModel):
    """A channel and its persisted member list."""
    id: str
    name: str
    description: str = ""
    is_private: bool = False
    members: List[str] = Field(default_factory=list)
    created_by: str
    created_at: datetime

    @property
    def member_count(self) -> int:
        return len(self.members)


class MessageRecord(BaseModel):
    """An immutable, append-only chat message."""
    id: str
    channel_id: str
    sender_id: str
    text: str
    created_at: datetime
    edited: bool = False
    attachments: Optional[List[Attachment]] = None
