"""Presence registry: which connections belong to which user.

The registry is the single source of truth for online status. A user is
online iff it has at least one registered connection; the entry is removed
entirely when its last connection goes away.

Notification model:
    Consumers call ``subscribe()`` once and receive a ``PresenceSubscription``,
    a typed event queue. Every ``register``/``deregister`` call that changes
    or touches a known user pushes exactly one ``PresenceEvent`` to every
    live subscription. ``transition`` on the event says whether the call
    crossed the zero/non-zero boundary; it is informational, not a filter.

Thread Safety:
    All map access happens under a ``threading.Lock``. Events are queued
    while the lock is held, so every subscriber sees them in the same order
    the registry applied them.
"""
import logging
import threading
from collections import deque
from typing import Deque, Dict, List, Set

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class PresenceEvent(BaseModel):
    """One registry change.

    Attributes:
        userId: Identity whose connection set changed.
        online: Whether the identity is online after the change.
        count: Number of connections after the change.
        transition: True if the change crossed the zero/non-zero boundary.
    """
    userId: str
    online: bool
    count: int
    transition: bool = False

    def to_wire(self) -> dict:
        """Payload of the presence_update event."""
        return {"userId": self.userId, "online": self.online, "count": self.count}


class PresenceSubscription:
    """Queue of presence events owned by one consumer."""

    def __init__(self, registry: "PresenceRegistry") -> None:
        self._registry = registry
        self._events: Deque[PresenceEvent] = deque()
        self.closed = False

    def _push(self, event: PresenceEvent) -> None:
        self._events.append(event)

    def drain(self) -> List[PresenceEvent]:
        """Remove and return all pending events, oldest first.

        Each event is handed out once even if several coroutines drain
        concurrently.
        """
        drained: List[PresenceEvent] = []
        while True:
            try:
                drained.append(self._events.popleft())
            except IndexError:
                return drained

    def unsubscribe(self) -> None:
        self._registry.unsubscribe(self)

    def __len__(self) -> int:
        return len(self._events)


class PresenceRegistry:
    """Thread-safe ``identity -> set of connection ids`` map."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._connections: Dict[str, Set[str]] = {}
        self._subscriptions: List[PresenceSubscription] = []

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def subscribe(self) -> PresenceSubscription:
        subscription = PresenceSubscription(self)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: PresenceSubscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)
        subscription.closed = True

    def _publish(self, event: PresenceEvent) -> None:
        # Caller holds self._lock
        for subscription in self._subscriptions:
            subscription._push(event)

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def register(self, user_id: str, connection_id: str) -> int:
        """Add a connection for ``user_id``.

        Idempotent per connection id: registering the same connection twice
        leaves the count unchanged (an event is still emitted).

        Returns:
            The user's connection count after the call.
        """
        if not user_id or not connection_id:
            raise ValueError("user_id and connection_id are required")

        with self._lock:
            connections = self._connections.get(user_id)
            was_online = bool(connections)
            if connections is None:
                connections = set()
                self._connections[user_id] = connections
            connections.add(connection_id)
            count = len(connections)
            self._publish(PresenceEvent(
                userId=user_id, online=True, count=count, transition=not was_online
            ))

        if not was_online:
            logger.info("[Presence] %s is online", user_id)
        logger.debug("[Presence] %s registered %s (count=%d)", user_id, connection_id, count)
        return count

    def deregister(self, user_id: str, connection_id: str) -> int:
        """Remove a connection for ``user_id``.

        Removing the last connection deletes the user's entry. Deregistering
        a user the registry does not know is a no-op and emits nothing.

        Returns:
            The user's connection count after the call.
        """
        if not user_id or not connection_id:
            raise ValueError("user_id and connection_id are required")

        with self._lock:
            connections = self._connections.get(user_id)
            if connections is None:
                return 0
            connections.discard(connection_id)
            count = len(connections)
            if count == 0:
                del self._connections[user_id]
            self._publish(PresenceEvent(
                userId=user_id, online=count > 0, count=count, transition=count == 0
            ))

        if count == 0:
            logger.info("[Presence] %s is offline", user_id)
        logger.debug("[Presence] %s deregistered %s (count=%d)", user_id, connection_id, count)
        return count

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def connection_count(self, user_id: str) -> int:
        with self._lock:
            return len(self._connections.get(user_id, ()))

    def is_online(self, user_id: str) -> bool:
        return self.connection_count(user_id) > 0

    def online_identities(self) -> Set[str]:
        """Snapshot of currently online user ids."""
        with self._lock:
            return set(self._connections.keys())

    def clear(self) -> None:
        """Drop all state (tests)."""
        with self._lock:
            self._connections.clear()
