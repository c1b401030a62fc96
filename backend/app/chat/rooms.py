"""Room membership manager and event fan-out.

A room is the live broadcast group of one channel: ``channel_id -> set of
connection ids``. Room membership is deliberately independent from the
channel's persisted member list, and joining is not checked against it:
any authenticated connection may join any room. Callers that want to
restrict private channels must do so before calling ``join``.

Key features:
    - Idempotent join/leave, empty rooms are dropped
    - ``leave_all`` for disconnect cleanup
    - Concurrent delivery with asyncio.gather(), each send bounded by a timeout
    - ``publish`` runs fan-out as a tracked background task
    - Frames to one socket keep the order their sends were scheduled in
    - Per-recipient failures are logged and never propagate to the sender

Thread Safety:
    Membership maps are guarded by a ``threading.Lock``. Broadcast takes a
    snapshot of the room under the lock and sends outside it, so membership
    is evaluated at broadcast time and a slow socket never holds the lock.
"""
import asyncio
import logging
import threading
from typing import Any, Dict, Iterable, List, Optional, Set

from app.errors import BroadcastDeliveryFailure

from .connection import Connection
from .schemas import event_name

logger = logging.getLogger(__name__)

# Default upper bound for a single socket send during fan-out
DEFAULT_SEND_TIMEOUT = 5.0


class RoomManager:
    """Tracks live connections and their room subscriptions."""

    def __init__(self, send_timeout: float = DEFAULT_SEND_TIMEOUT) -> None:
        self._send_timeout = send_timeout
        self._lock = threading.Lock()

        # connection_id -> Connection (every live, authenticated connection)
        self._connections: Dict[str, Connection] = {}

        # channel_id -> set of connection ids
        self._rooms: Dict[str, Set[str]] = {}

        # connection_id -> set of channel ids (reverse index for leave_all)
        self._memberships: Dict[str, Set[str]] = {}

        # connection_id -> lock serializing sends to that socket
        self._send_locks: Dict[str, asyncio.Lock] = {}

        # Background fan-out tasks still in flight
        self._pending: Set["asyncio.Task[int]"] = set()

    # =========================================================================
    # Connection table
    # =========================================================================

    def attach(self, connection: Connection) -> None:
        with self._lock:
            self._connections[connection.id] = connection

    def detach(self, connection_id: str) -> Optional[Connection]:
        with self._lock:
            self._send_locks.pop(connection_id, None)
            return self._connections.pop(connection_id, None)

    def get_connection(self, connection_id: str) -> Optional[Connection]:
        with self._lock:
            return self._connections.get(connection_id)

    def connection_count(self) -> int:
        with self._lock:
            return len(self._connections)

    # =========================================================================
    # Membership
    # =========================================================================

    def join(self, connection_id: str, channel_id: str) -> int:
        """Subscribe a connection to a channel's room.

        Returns:
            Room size after the join.
        """
        with self._lock:
            members = self._rooms.setdefault(channel_id, set())
            members.add(connection_id)
            self._memberships.setdefault(connection_id, set()).add(channel_id)
            size = len(members)
        logger.debug(f"[Rooms] {connection_id} joined {channel_id} (size={size})")
        return size

    def leave(self, connection_id: str, channel_id: str) -> int:
        """Unsubscribe a connection from a room. Unknown pairs are a no-op.

        Returns:
            Room size after the leave.
        """
        with self._lock:
            self._remove(connection_id, channel_id)
            size = len(self._rooms.get(channel_id, ()))
        logger.debug(f"[Rooms] {connection_id} left {channel_id} (size={size})")
        return size

    def leave_all(self, connection_id: str) -> List[str]:
        """Remove a connection from every room it joined.

        Returns:
            The channel ids it was removed from.
        """
        with self._lock:
            channels = list(self._memberships.get(connection_id, ()))
            for channel_id in channels:
                self._remove(connection_id, channel_id)
            self._memberships.pop(connection_id, None)
        if channels:
            logger.debug(f"[Rooms] {connection_id} removed from {len(channels)} rooms")
        return channels

    def _remove(self, connection_id: str, channel_id: str) -> None:
        # Caller holds self._lock
        members = self._rooms.get(channel_id)
        if members is not None:
            members.discard(connection_id)
            if not members:
                del self._rooms[channel_id]
        joined = self._memberships.get(connection_id)
        if joined is not None:
            joined.discard(channel_id)
            if not joined:
                del self._memberships[connection_id]

    def members_of(self, channel_id: str) -> Set[str]:
        with self._lock:
            return set(self._rooms.get(channel_id, ()))

    def rooms_of(self, connection_id: str) -> Set[str]:
        with self._lock:
            return set(self._memberships.get(connection_id, ()))

    def room_size(self, channel_id: str) -> int:
        with self._lock:
            return len(self._rooms.get(channel_id, ()))

    # =========================================================================
    # Delivery
    # =========================================================================

    def _room_recipients(self, channel_id: str, exclude: Optional[str]) -> List[Connection]:
        with self._lock:
            return [
                self._connections[cid]
                for cid in self._rooms.get(channel_id, ())
                if cid != exclude and cid in self._connections
            ]

    def _all_recipients(self) -> List[Connection]:
        with self._lock:
            return list(self._connections.values())

    async def broadcast(
        self,
        channel_id: str,
        event_type: Any,
        payload: Dict[str, Any],
        exclude: Optional[str] = None,
    ) -> int:
        """Send an event to every connection currently in a room and wait for it.

        Broadcasting to an empty or unknown room is a no-op.

        Args:
            channel_id: Room to broadcast to.
            event_type: Event name.
            payload: JSON-serializable payload.
            exclude: Optional connection id that should not receive it.

        Returns:
            Number of connections the event was delivered to.
        """
        recipients = self._room_recipients(channel_id, exclude)
        if not recipients:
            return 0
        return await self._deliver(recipients, event_type, payload)

    async def broadcast_all(self, event_type: Any, payload: Dict[str, Any]) -> int:
        """Send an event to every live connection, regardless of rooms."""
        recipients = self._all_recipients()
        if not recipients:
            return 0
        return await self._deliver(recipients, event_type, payload)

    def publish(
        self,
        channel_id: str,
        event_type: Any,
        payload: Dict[str, Any],
        exclude: Optional[str] = None,
    ) -> int:
        """Schedule a room broadcast in the background and return immediately.

        Recipients are snapshotted now; the sends run in a tracked task so a
        slow socket never delays the caller. Must be called from a running
        event loop.

        Returns:
            Number of connections the event was scheduled for.
        """
        recipients = self._room_recipients(channel_id, exclude)
        if recipients:
            self._spawn(recipients, event_type, payload)
        return len(recipients)

    def publish_all(self, event_type: Any, payload: Dict[str, Any]) -> int:
        """Background variant of ``broadcast_all``."""
        recipients = self._all_recipients()
        if recipients:
            self._spawn(recipients, event_type, payload)
        return len(recipients)

    async def send_to(self, connection_id: str, event_type: Any, payload: Dict[str, Any]) -> bool:
        """Send an event to a single connection."""
        connection = self.get_connection(connection_id)
        if connection is None:
            return False
        return await self._safe_send(connection, event_type, payload)

    async def drain(self) -> None:
        """Wait until every background fan-out task has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def pending_count(self) -> int:
        return len(self._pending)

    def _spawn(self, recipients: List[Connection], event_type: Any, payload: Dict[str, Any]) -> None:
        task = asyncio.get_running_loop().create_task(
            self._deliver(recipients, event_type, payload)
        )
        self._pending.add(task)
        task.add_done_callback(self._on_fanout_done)

    def _on_fanout_done(self, task: "asyncio.Task[int]") -> None:
        self._pending.discard(task)
        if task.cancelled():
            logger.debug("[Rooms] Fan-out task cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.error(f"[Rooms] Fan-out task failed: {error}", exc_info=error)

    async def _deliver(
        self, recipients: Iterable[Connection], event_type: Any, payload: Dict[str, Any]
    ) -> int:
        results = await asyncio.gather(
            *[self._safe_send(conn, event_type, payload) for conn in recipients],
            return_exceptions=True,
        )
        return sum(1 for ok in results if ok is True)

    def _send_lock(self, connection_id: str) -> asyncio.Lock:
        with self._lock:
            lock = self._send_locks.get(connection_id)
            if lock is None:
                lock = self._send_locks[connection_id] = asyncio.Lock()
            return lock

    async def _send_in_order(self, connection: Connection, event_type: Any, payload: Dict[str, Any]) -> None:
        # asyncio.Lock wakes waiters FIFO, so frames reach a socket in the
        # order their sends were scheduled.
        async with self._send_lock(connection.id):
            await connection.send(event_type, payload)

    async def _safe_send(self, connection: Connection, event_type: Any, payload: Dict[str, Any]) -> bool:
        """Send to one connection; failures are logged, never raised.

        The timeout covers waiting behind earlier frames for the same socket.

        Returns:
            True if successful, False if the send failed or timed out.
        """
        try:
            await asyncio.wait_for(
                self._send_in_order(connection, event_type, payload), timeout=self._send_timeout
            )
            return True
        except asyncio.TimeoutError:
            failure = BroadcastDeliveryFailure(
                connection.id, event_name(event_type), f"send timed out after {self._send_timeout}s"
            )
            logger.warning(f"[Rooms] {failure}")
            return False
        except BroadcastDeliveryFailure as failure:
            logger.debug(f"[Rooms] {failure}")
            return False
