"""Error taxonomy shared by the HTTP routes and the WebSocket handlers.

Every recoverable failure is a ``ChatError`` subclass carrying the HTTP status
it maps to. HTTP routes let these propagate to the exception handler
registered in ``app.main``; WebSocket handlers turn them into an ``error``
event sent only to the originating connection.

``BroadcastDeliveryFailure`` is the odd one out: it is raised by a single
connection send, caught and logged by the room manager, and never reaches
the sender of the message being broadcast.
"""
from typing import Optional


class ChatError(Exception):
    """Base class for errors that are reported back to a client."""

    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class AuthenticationError(ChatError):
    """Missing, invalid, expired or malformed credential."""

    status_code = 401
    default_message = "invalid credential"


class ValidationError(ChatError):
    """Malformed input: empty text, missing fields, out-of-range limits."""

    status_code = 400
    default_message = "Validation error"


class AuthorizationError(ChatError):
    status_code = 403
    default_message = "Not allowed"


class NotFoundError(ChatError):
    status_code = 404
    default_message = "Not found"


class ConflictError(ChatError):
    status_code = 409
    default_message = "Already exists"


class PersistenceError(ChatError):
    """Durable store failure. The client only ever sees the generic message."""

    status_code = 500
    default_message = "Failed to persist data"


class BroadcastDeliveryFailure(Exception):
    """A single recipient connection could not be sent an event."""

    def __init__(self, connection_id: str, event_type: str, reason: str) -> None:
        self.connection_id = connection_id
        self.event_type = event_type
        self.reason = reason
        super().__init__(
            f"Failed to deliver {event_type} to connection {connection_id}: {reason}"
        )
