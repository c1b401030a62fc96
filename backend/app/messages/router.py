"""Messages router — history pagination, HTTP send and delete.

Endpoints:
    GET    /api/channels/{id}/messages?before=<ISO>&limit=20 - One page of history
    POST   /api/channels/{id}/messages                        - Send a message (auth)
    DELETE /api/channels/{id}/messages/{message_id}           - Delete own message (auth)

Sending and deleting go through the same pipeline as the WebSocket, so the
channel's room receives ``receive_message`` / ``message_deleted`` either way.
"""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.chat.manager import ChatManager
from app.dependencies import get_chat, get_current_identity

from .schemas import MessageCreate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/channels/{channel_id}/messages", tags=["messages"])


@router.get("")
async def list_messages(
    channel_id: str,
    before: Optional[datetime] = None,
    limit: Optional[int] = None,
    chat: ChatManager = Depends(get_chat),
) -> dict:
    """Return the newest ``limit`` messages strictly older than ``before``.

    Args:
        channel_id: Channel to read.
        before: Exclusive cursor; pass the previous page's ``nextCursor``.
        limit: Page size, default 20, capped at 100.

    Returns:
        {messages (oldest first), hasMore, nextCursor}
    """
    page = chat.fetch_page(channel_id, before=before, limit=limit)
    return page.model_dump(mode="json")


@router.post("", status_code=201)
async def create_message(
    channel_id: str,
    body: MessageCreate,
    identity: str = Depends(get_current_identity),
    chat: ChatManager = Depends(get_chat),
) -> JSONResponse:
    message = await chat.pipeline.submit(channel_id, identity, body.text, body.attachments)
    return JSONResponse({"message": "Message created", "data": message.to_wire()}, status_code=201)


@router.delete("/{message_id}")
async def delete_message(
    channel_id: str,
    message_id: str,
    identity: str = Depends(get_current_identity),
    chat: ChatManager = Depends(get_chat),
) -> dict:
    await chat.pipeline.delete(message_id, identity, channel_id=channel_id)
    return {"message": "Message deleted"}
