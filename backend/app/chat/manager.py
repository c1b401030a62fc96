"""Realtime chat manager.

``ChatManager`` ties the realtime pieces together for one process:

    - PresenceRegistry: which users are online, on how many connections
    - RoomManager:      live connections and their channel rooms
    - MessagePipeline:  persist-then-broadcast message ingestion and deletion
    - fetch_page:       cursor pagination over the durable store

It is constructed explicitly (see ``app.main.lifespan``) and handed to
route handlers through ``app.state``; nothing imports a shared instance. All
state is process-local and lost on restart, so clients must reconnect and
rejoin rooms.

Connection lifecycle:
    1. ``authenticate(token)``   -> identity, or AuthenticationError
    2. ``open(ws, identity)``    -> attaches the connection, registers presence
    3. ``announce(conn)``        -> sends presence_init, publishes presence_update
    4. ``handle_event(...)``     -> join/leave/typing/send_message/ping
    5. ``disconnect(conn)``      -> leaves all rooms, deregisters presence,
                                    publishes presence_update. Must run in a
                                    ``finally`` block that covers step 3.

Room fan-out (messages, typing, member counts, presence) runs in background
tasks owned by the RoomManager; ``drain()`` waits for them.
"""
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import WebSocket
from pydantic import ValidationError as PydanticValidationError

from app.auth.tokens import ConnectionAuthenticator
from app.config import ChatSettings
from app.errors import ValidationError
from app.store import DurableStore

from .connection import Connection
from .pagination import Page, fetch_page
from .pipeline import MessagePipeline
from .presence import PresenceRegistry
from .rooms import RoomManager
from .schemas import (
    ChannelRef,
    ClientEvent,
    MessageOut,
    SendMessagePayload,
    ServerEvent,
    TypingPayload,
)

logger = logging.getLogger(__name__)

EventHandler = Callable[[Connection, Any], Awaitable[None]]


class ChatManager:
    """Owns presence, rooms and the message pipeline for one process."""

    def __init__(
        self,
        store: DurableStore,
        authenticator: ConnectionAuthenticator,
        settings: Optional[ChatSettings] = None,
    ) -> None:
        self.settings = settings or ChatSettings()
        self.store = store
        self.authenticator = authenticator
        self.presence = PresenceRegistry()
        self.rooms = RoomManager(send_timeout=self.settings.send_timeout_seconds)
        self.pipeline = MessagePipeline(
            store, self.rooms, max_message_length=self.settings.max_message_length
        )

        # The broadcast layer's single presence subscription
        self._presence_events = self.presence.subscribe()

        self._handlers: Dict[str, EventHandler] = {
            ClientEvent.JOIN_CHANNEL.value: self._on_join_channel,
            ClientEvent.LEAVE_CHANNEL.value: self._on_leave_channel,
            ClientEvent.TYPING.value: self._on_typing,
            ClientEvent.SEND_MESSAGE.value: self._on_send_message,
            ClientEvent.PING_CHECK.value: self._on_ping_check,
        }

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    def authenticate(self, token: Optional[str]) -> str:
        """Validate a handshake credential and return the bound identity."""
        return self.authenticator.authenticate(token)

    def open(self, websocket: WebSocket, user_id: str) -> Connection:
        """Register an accepted, authenticated socket without sending anything.

        The returned connection is attached and counted online before this
        returns, so the caller's ``finally: disconnect(...)`` always has
        something to clean up.
        """
        connection = Connection(websocket, user_id)
        self.rooms.attach(connection)
        count = self.presence.register(user_id, connection.id)
        logger.info(
            f"[Chat] Connection {connection.id} opened for {user_id} "
            f"({count} connections for user, {self.rooms.connection_count()} total)"
        )
        return connection

    async def announce(self, connection: Connection) -> None:
        """Send presence_init to a newly opened connection, then publish presence."""
        await self.rooms.send_to(
            connection.id,
            ServerEvent.PRESENCE_INIT,
            {"onlineUsers": sorted(self.presence.online_identities())},
        )
        self.flush_presence()

    async def connect(self, websocket: WebSocket, user_id: str) -> Connection:
        """``open`` followed by ``announce``.

        The caller must have accepted the WebSocket already.
        """
        connection = self.open(websocket, user_id)
        await self.announce(connection)
        return connection

    def disconnect(self, connection: Connection) -> None:
        """Tear down a connection. Safe to call more than once.

        Nothing here awaits, so cleanup completes even while the surrounding
        task is being cancelled. The presence change goes out in the
        background.
        """
        left = self.rooms.leave_all(connection.id)
        self.rooms.detach(connection.id)
        count = self.presence.deregister(connection.user_id, connection.id)
        logger.info(
            f"[Chat] Connection {connection.id} closed for {connection.user_id} "
            f"(left {len(left)} rooms, {count} connections remain for user)"
        )
        self.flush_presence()

    def flush_presence(self) -> None:
        """Publish every queued presence change to all live connections."""
        for event in self._presence_events.drain():
            self.rooms.publish_all(ServerEvent.PRESENCE_UPDATE, event.to_wire())

    async def drain(self) -> None:
        """Wait for in-flight background fan-out."""
        await self.rooms.drain()

    def close(self) -> None:
        self._presence_events.unsubscribe()

    # =========================================================================
    # Event dispatch
    # =========================================================================

    async def handle_event(self, connection: Connection, event_type: Any, payload: Any) -> None:
        """Dispatch one client event.

        Raises:
            ChatError: For any recoverable failure; the caller reports it to
                the originating connection only.
        """
        handler = self._handlers.get(event_type) if isinstance(event_type, str) else None
        if handler is None:
            raise ValidationError(f"Unknown event: {event_type}")
        await handler(connection, payload)

    @staticmethod
    def _parse(model, payload: Any, message: str):
        if not isinstance(payload, dict):
            raise ValidationError(message)
        try:
            return model(**payload)
        except PydanticValidationError:
            raise ValidationError(message)

    async def _on_join_channel(self, connection: Connection, payload: Any) -> None:
        ref = self._parse(ChannelRef, payload, "channelId is required")
        await self.join_channel(connection, ref.channelId)

    async def _on_leave_channel(self, connection: Connection, payload: Any) -> None:
        ref = self._parse(ChannelRef, payload, "channelId is required")
        self.leave_channel(connection, ref.channelId)

    async def _on_typing(self, connection: Connection, payload: Any) -> None:
        typing = self._parse(TypingPayload, payload, "channelId is required")
        await self.typing(connection, typing.channelId, typing.isTyping)

    async def _on_send_message(self, connection: Connection, payload: Any) -> None:
        message = self._parse(SendMessagePayload, payload, "Invalid message payload")
        await self.send_message(connection, message.channelId, message.text)

    async def _on_ping_check(self, connection: Connection, payload: Any) -> None:
        await self.rooms.send_to(
            connection.id, ServerEvent.PONG_CHECK, {"ok": True, "payload": payload}
        )

    # =========================================================================
    # Operations
    # =========================================================================

    async def join_channel(self, connection: Connection, channel_id: str) -> int:
        """Subscribe a connection to a channel's room.

        Any authenticated connection may join any room; persisted channel
        membership is not consulted. When the channel exists the room is told
        its new size.

        Returns:
            Room size after the join.
        """
        size = self.rooms.join(connection.id, channel_id)
        logger.info(f"[Chat] User {connection.user_id} joined channel {channel_id}")

        if self.store.find_channel_by_id(channel_id) is not None:
            self.rooms.publish(
                channel_id,
                ServerEvent.CHANNEL_MEMBER_UPDATE,
                {"channelId": channel_id, "memberSocketCount": self.rooms.room_size(channel_id)},
            )
        return size

    def leave_channel(self, connection: Connection, channel_id: str) -> int:
        size = self.rooms.leave(connection.id, channel_id)
        logger.info(f"[Chat] User {connection.user_id} left channel {channel_id}")
        return size

    async def typing(self, connection: Connection, channel_id: str, is_typing: bool) -> None:
        """Relay a typing indicator to the room, excluding the sender."""
        self.rooms.publish(
            channel_id,
            ServerEvent.TYPING_UPDATE,
            {"channelId": channel_id, "userId": connection.user_id, "isTyping": bool(is_typing)},
            exclude=connection.id,
        )

    async def send_message(self, connection: Connection, channel_id: str, text: Any) -> MessageOut:
        """Send a message as the connection's bound identity."""
        return await self.pipeline.submit(channel_id, connection.user_id, text)

    def fetch_page(
        self,
        channel_id: str,
        before: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> Page:
        return fetch_page(
            self.store,
            channel_id,
            before=before,
            limit=limit,
            default_limit=self.settings.default_page_size,
            max_limit=self.settings.max_page_size,
        )
