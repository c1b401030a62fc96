"""Channel service: listing, creation and persisted membership.

Persisted membership (the ``members`` list stored with the channel) is
independent of live room membership. Joining a room over the WebSocket does
not add a member here, and joining here does not subscribe any connection.
"""
import logging
from typing import Dict, List, Optional

from app.errors import NotFoundError
from app.store import ChannelRecord, DurableStore, IdentityRecord

from .schemas import ChannelDetail, ChannelSummary, UserRef

logger = logging.getLogger(__name__)


def _user_ref(identity_id: str, record: Optional[IdentityRecord]) -> UserRef:
    if record is None:
        return UserRef(id=identity_id)
    return UserRef(
        id=record.id,
        username=record.username,
        displayName=record.display_name or record.username,
        avatarUrl=record.avatar_url,
    )


class ChannelService:
    """Channel CRUD on top of the durable store."""

    def __init__(self, store: DurableStore) -> None:
        self._store = store
        self._identities: Dict[str, Optional[IdentityRecord]] = {}

    def _lookup(self, identity_id: str) -> UserRef:
        if identity_id not in self._identities:
            self._identities[identity_id] = self._store.find_identity(identity_id)
        return _user_ref(identity_id, self._identities[identity_id])

    def _summary(self, channel: ChannelRecord) -> ChannelSummary:
        return ChannelSummary(
            id=channel.id,
            name=channel.name,
            isPrivate=channel.is_private,
            memberCount=channel.member_count,
            createdBy=self._lookup(channel.created_by),
            createdAt=channel.created_at,
        )

    def _detail(self, channel: ChannelRecord) -> ChannelDetail:
        summary = self._summary(channel)
        return ChannelDetail(
            **summary.model_dump(),
            description=channel.description,
            members=[self._lookup(member) for member in channel.members],
        )

    def _require(self, channel_id: str) -> ChannelRecord:
        channel = self._store.find_channel_by_id(channel_id)
        if channel is None:
            raise NotFoundError("Channel not found")
        return channel

    def list_channels(self) -> List[ChannelSummary]:
        return [self._summary(channel) for channel in self._store.list_channels()]

    def get_channel(self, channel_id: str) -> ChannelDetail:
        return self._detail(self._require(channel_id))

    def create_channel(
        self,
        name: str,
        created_by: str,
        description: Optional[str] = "",
        is_private: bool = False,
    ) -> ChannelDetail:
        """Create a channel with the creator as its first member.

        Raises:
            ConflictError: A channel with this name already exists.
        """
        channel = self._store.create_channel(
            name=name.strip(),
            created_by=created_by,
            description=description or "",
            is_private=bool(is_private),
        )
        logger.info("[Channels] %s created channel %s (%s)", created_by, channel.name, channel.id)
        return self._detail(channel)

    def join(self, channel_id: str, identity_id: str) -> ChannelRecord:
        """Add a persisted member. Joining twice is a no-op."""
        self._require(channel_id)
        channel = self._store.add_channel_member(channel_id, identity_id)
        logger.info("[Channels] %s joined %s (%d members)", identity_id, channel_id, channel.member_count)
        return channel

    def leave(self, channel_id: str, identity_id: str) -> ChannelRecord:
        self._require(channel_id)
        channel = self._store.remove_channel_member(channel_id, identity_id)
        logger.info("[Channels] %s left %s", identity_id, channel_id)
        return channel
