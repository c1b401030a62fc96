"""Pydantic schemas for the messages endpoints."""
from typing import Any, List, Optional

from pydantic import BaseModel

from app.store import Attachment


class MessageCreate(BaseModel):
    """Request body for POST /api/channels/{id}/messages.

    ``text`` is left loosely typed; the pipeline owns text validation so HTTP
    and WebSocket senders get the same error messages.
    """
    text: Any = None
    attachments: Optional[List[Attachment]] = None
