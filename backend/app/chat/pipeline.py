"""Message ingestion and broadcast pipeline.

Submitting a message runs four steps in a fixed order:

    1. Check the channel exists          -> NotFoundError, nothing persisted
    2. Persist the message                -> PersistenceError, nothing broadcast
    3. Enrich with sender display info    (pure; unknown sender degrades to id only)
    4. Publish receive_message to room    (background; per-recipient failures logged only)

Persisting strictly before broadcasting means a client can never render a
message that a crash then loses. The call returns once step 2 succeeds and
the fan-out is scheduled; delivery runs in the background and its results
do not change the outcome.

Deletion is the parallel path: only the sender may delete, and the room gets
a message_deleted event carrying the id alone.
"""
import logging
from typing import List, Optional

from app.errors import (
    AuthorizationError,
    ChatError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from app.store import Attachment, DurableStore, IdentityRecord, MessageRecord

from .rooms import RoomManager
from .schemas import MessageOut, ServerEvent, enrich

logger = logging.getLogger(__name__)

DEFAULT_MAX_MESSAGE_LENGTH = 2000


class MessagePipeline:
    """Validates, persists, enriches and fans out chat messages."""

    def __init__(
        self,
        store: DurableStore,
        rooms: RoomManager,
        max_message_length: int = DEFAULT_MAX_MESSAGE_LENGTH,
    ) -> None:
        self._store = store
        self._rooms = rooms
        self._max_message_length = max_message_length

    def clean_text(self, text: object) -> str:
        """Trim and validate message text.

        Raises:
            ValidationError: Text missing, blank, or too long.
        """
        if not isinstance(text, str) or not text.strip():
            raise ValidationError("Message text required")
        cleaned = text.strip()
        if len(cleaned) > self._max_message_length:
            raise ValidationError(
                f"Message text too long (max {self._max_message_length} characters)"
            )
        return cleaned

    def lookup_sender(self, sender_id: str) -> Optional[IdentityRecord]:
        """Best-effort identity lookup used for enrichment."""
        try:
            return self._store.find_identity(sender_id)
        except Exception:
            logger.warning("[Pipeline] Sender lookup failed for %s", sender_id, exc_info=True)
            return None

    async def submit(
        self,
        channel_id: str,
        sender_id: str,
        text: object,
        attachments: Optional[List[Attachment]] = None,
    ) -> MessageOut:
        """Ingest one message and broadcast it to the channel's room.

        Args:
            channel_id: Target channel.
            sender_id: Identity bound to the connection or request. Never
                taken from a client payload.
            text: Raw text; trimmed before storage.
            attachments: Optional attachment list.

        Returns:
            The enriched message as broadcast.
        """
        if not channel_id:
            raise ValidationError("channelId is required")
        cleaned = self.clean_text(text)

        try:
            channel = self._store.find_channel_by_id(channel_id)
        except Exception as e:
            logger.error("[Pipeline] Channel lookup failed for %s: %s", channel_id, e, exc_info=True)
            raise PersistenceError("Failed to send message") from e
        if channel is None:
            raise NotFoundError("Channel not found")

        try:
            record = self._store.create_message(
                channel_id=channel_id,
                sender_id=sender_id,
                text=cleaned,
                attachments=attachments,
            )
        except ChatError:
            raise
        except Exception as e:
            logger.error("[Pipeline] Failed to persist message in %s: %s", channel_id, e, exc_info=True)
            raise PersistenceError("Failed to send message") from e

        message = enrich(record, self.lookup_sender(sender_id))

        scheduled = self._rooms.publish(
            channel_id, ServerEvent.RECEIVE_MESSAGE, message.to_wire()
        )
        logger.info(
            "[Pipeline] Message %s from %s in %s fanned out to %d connections",
            record.id, sender_id, channel_id, scheduled,
        )
        return message

    async def delete(
        self,
        message_id: str,
        requester_id: str,
        channel_id: Optional[str] = None,
    ) -> MessageRecord:
        """Delete a message and notify its room.

        Args:
            message_id: Message to delete.
            requester_id: Identity asking for the deletion.
            channel_id: If given, the message must belong to this channel.

        Returns:
            The deleted record.

        Raises:
            NotFoundError: Unknown message (or wrong channel).
            AuthorizationError: Requester is not the sender.
            PersistenceError: The store failed to delete.
        """
        record = self._store.find_message_by_id(message_id)
        if record is None or (channel_id is not None and record.channel_id != channel_id):
            raise NotFoundError("Message not found")
        if record.sender_id != requester_id:
            logger.warning(
                "[Pipeline] %s attempted to delete message %s owned by %s",
                requester_id, message_id, record.sender_id,
            )
            raise AuthorizationError("Not allowed")

        try:
            deleted = self._store.delete_message(message_id)
        except Exception as e:
            logger.error("[Pipeline] Failed to delete message %s: %s", message_id, e, exc_info=True)
            raise PersistenceError("Failed to delete message") from e
        if not deleted:
            # Lost a race with another delete
            raise NotFoundError("Message not found")

        self._rooms.publish(
            record.channel_id, ServerEvent.MESSAGE_DELETED, {"id": message_id}
        )
        logger.info("[Pipeline] Message %s deleted by %s", message_id, requester_id)
        return record
