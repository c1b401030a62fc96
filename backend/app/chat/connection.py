"""A single authenticated WebSocket session."""
import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import WebSocket

from app.errors import BroadcastDeliveryFailure

from .schemas import envelope, event_name

logger = logging.getLogger(__name__)


class Connection:
    """Live bidirectional session owned by exactly one identity.

    The identity is bound at construction (after authentication) and cannot
    be changed afterwards.

    Attributes:
        id: Unique connection id (uuid4), generated server-side.
    """

    def __init__(
        self,
        websocket: WebSocket,
        user_id: str,
        connection_id: Optional[str] = None,
    ) -> None:
        if not user_id:
            raise ValueError("A connection must be bound to an identity")
        self.id = connection_id or str(uuid.uuid4())
        self._user_id = user_id
        self._websocket = websocket

    @property
    def user_id(self) -> str:
        return self._user_id

    async def send(self, event_type: Any, payload: Optional[Dict[str, Any]] = None) -> None:
        """Send one event frame.

        Raises:
            BroadcastDeliveryFailure: If the underlying socket send fails.
        """
        try:
            await self._websocket.send_json(envelope(event_type, payload))
        except Exception as e:
            raise BroadcastDeliveryFailure(self.id, event_name(event_type), str(e)) from e

    def __repr__(self) -> str:
        return f"Connection(id={self.id!r}, user_id={self._user_id!r})"
