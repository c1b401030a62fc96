"""Wire schemas for the realtime chat protocol.

Every WebSocket frame, in both directions, is a JSON envelope:

    {"type": "<event name>", "payload": {...}}

Event names are part of the client contract and must not change.

Enrichment (adding sender display attributes to a stored message) is a pure
function, ``enrich``, from a ``MessageRecord`` plus the sender's
``IdentityRecord`` to a ``MessageOut``. The stored record is never mutated.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from app.store.schemas import Attachment, IdentityRecord, MessageRecord


class ClientEvent(str, Enum):
    """Events a client may send."""
    JOIN_CHANNEL = "join_channel"
    LEAVE_CHANNEL = "leave_channel"
    TYPING = "typing"
    SEND_MESSAGE = "send_message"
    PING_CHECK = "ping_check"


class ServerEvent(str, Enum):
    """Events the server emits."""
    RECEIVE_MESSAGE = "receive_message"
    MESSAGE_DELETED = "message_deleted"
    PRESENCE_INIT = "presence_init"
    PRESENCE_UPDATE = "presence_update"
    CHANNEL_MEMBER_UPDATE = "channel_member_update"
    TYPING_UPDATE = "typing_update"
    PONG_CHECK = "pong_check"
    ERROR = "error"


# =============================================================================
# Client payloads
# =============================================================================


class ChannelRef(BaseModel):
    """Payload of join_channel / leave_channel."""
    channelId: str = Field(..., min_length=1)


class TypingPayload(BaseModel):
    channelId: str = Field(..., min_length=1)
    isTyping: bool = False


class SendMessagePayload(BaseModel):
    """Payload of send_message. Text is validated by the pipeline, not here,
    so empty text yields the pipeline's error message."""
    channelId: str = Field(..., min_length=1)
    text: Any = None


# =============================================================================
# Server payloads
# =============================================================================


class SenderInfo(BaseModel):
    """Sender display attributes, denormalized at read time."""
    id: str
    username: Optional[str] = None
    displayName: Optional[str] = None
    avatarUrl: Optional[str] = None


class MessageOut(BaseModel):
    """Enriched message as broadcast in receive_message and returned by the API.

    Attributes:
        id: Message id.
        channelId: Owning channel.
        text: Trimmed message body.
        createdAt: Creation time (UTC); also the pagination cursor value.
        edited: Whether the message was edited.
        attachments: Optional attachment list.
        sender: Sender id and display attributes.
    """
    id: str
    channelId: str
    text: str
    createdAt: datetime
    edited: bool = False
    attachments: Optional[List[Attachment]] = None
    sender: SenderInfo

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


def enrich(record: MessageRecord, sender: Optional[IdentityRecord]) -> MessageOut:
    """Build the wire representation of a stored message.

    An unknown sender (deleted account, lookup failure) still yields a valid
    record carrying only the sender id.
    """
    if sender is not None:
        sender_info = SenderInfo(
            id=sender.id,
            username=sender.username,
            displayName=sender.display_name or sender.username,
            avatarUrl=sender.avatar_url,
        )
    else:
        sender_info = SenderInfo(id=record.sender_id)

    return MessageOut(
        id=record.id,
        channelId=record.channel_id,
        text=record.text,
        createdAt=record.created_at,
        edited=record.edited,
        attachments=record.attachments,
        sender=sender_info,
    )


def event_name(event_type: Any) -> str:
    return event_type.value if isinstance(event_type, Enum) else str(event_type)


def envelope(event_type: Any, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Build a server→client frame."""
    return {"type": event_name(event_type), "payload": payload if payload is not None else {}}
