"""Realtime chat WebSocket endpoint.

This module provides:
    - WebSocket /ws: authenticated realtime connection

Handshake:
    The bearer token is read from the ``token`` query parameter or the
    ``Authorization: Bearer`` header. A missing or bad credential closes the
    socket before it is accepted, with close code 4401 and the reason
    ("missing credential", "invalid credential", "malformed credential").

Frames (both directions): {"type": "<event>", "payload": {...}}

Client events:
    - join_channel   {channelId}
    - leave_channel  {channelId}
    - typing         {channelId, isTyping}
    - send_message   {channelId, text}
    - ping_check     any

Server events:
    - presence_init          {onlineUsers}          once, on connect
    - presence_update        {userId, online, count} every registry change
    - channel_member_update  {channelId, memberSocketCount}
    - typing_update          {channelId, userId, isTyping}
    - receive_message        enriched message
    - message_deleted        {id}
    - pong_check             {ok, payload}
    - error                  {message}              to the originating socket only
"""
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from app.errors import AuthenticationError, ChatError
from app.auth.tokens import token_from_handshake

from .manager import ChatManager
from .schemas import ServerEvent

logger = logging.getLogger(__name__)

router = APIRouter()

# Application-defined close code for a rejected credential
WS_4401_UNAUTHORIZED = 4401

INVALID_EVENT_MESSAGE = "Invalid event payload"
GENERIC_ERROR_MESSAGE = "Internal server error"


@router.websocket("/ws")
async def websocket_chat_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for realtime chat.

    Protocol Flow:
        1. Client connects with a token → server validates it before accept
        2. Server sends presence_init, then broadcasts presence_update
        3. Client sends events; each is handled in arrival order
        4. Any ChatError becomes an error event; the socket stays open
        5. On disconnect (clean or not) → leave all rooms, deregister
           presence, publish presence_update
    """
    chat: ChatManager = websocket.app.state.chat

    token = token_from_handshake(websocket.query_params, websocket.headers)
    try:
        user_id = chat.authenticate(token)
    except AuthenticationError as e:
        logger.warning(f"[WS] Rejected connection: {e.message}")
        await websocket.close(code=WS_4401_UNAUTHORIZED, reason=e.message)
        return

    await websocket.accept()
    connection = chat.open(websocket, user_id)

    try:
        await chat.announce(connection)

        # Main event loop
        while True:
            try:
                data = await websocket.receive_json()
            except (ValueError, KeyError):
                # Frame was not valid JSON text
                await connection.send(ServerEvent.ERROR, {"message": INVALID_EVENT_MESSAGE})
                continue

            if not isinstance(data, dict):
                await connection.send(ServerEvent.ERROR, {"message": INVALID_EVENT_MESSAGE})
                continue

            event_type = data.get("type")
            logger.debug("[WS] %s received: type=%s", connection.id, event_type)

            try:
                await chat.handle_event(connection, event_type, data.get("payload"))
            except ChatError as e:
                logger.info(f"[WS] {event_type} from {user_id} failed: {e.message}")
                await connection.send(ServerEvent.ERROR, {"message": e.message})
            except WebSocketDisconnect:
                raise
            except Exception:
                logger.exception(f"[WS] Unhandled error processing {event_type} from {user_id}")
                await connection.send(ServerEvent.ERROR, {"message": GENERIC_ERROR_MESSAGE})

    except WebSocketDisconnect as e:
        logger.info(f"[WS] {connection.id} disconnected (code={e.code})")
    except Exception as e:
        # Network failure or a failed error send; cleanup still runs below
        logger.warning(f"[WS] {connection.id} dropped: {e}")
    finally:
        chat.disconnect(connection)
