"""Channel router — listing, creation and persisted membership.

Endpoints:
    GET  /api/channels            - List channels (public)
    POST /api/channels            - Create a channel (auth)
    GET  /api/channels/{id}       - Channel details with members (public)
    POST /api/channels/{id}/join  - Add requester to persisted members (auth)
    POST /api/channels/{id}/leave - Remove requester from persisted members (auth)
"""
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.dependencies import get_current_identity, get_store
from app.store import DurableStore

from .schemas import ChannelCreate
from .service import ChannelService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/channels", tags=["channels"])


def _service(store: DurableStore = Depends(get_store)) -> ChannelService:
    return ChannelService(store)


@router.get("")
async def list_channels(service: ChannelService = Depends(_service)) -> dict:
    channels = service.list_channels()
    return {"channels": [channel.model_dump(mode="json") for channel in channels]}


@router.post("", status_code=201)
async def create_channel(
    body: ChannelCreate,
    identity: str = Depends(get_current_identity),
    service: ChannelService = Depends(_service),
) -> JSONResponse:
    """Create a channel.

    Returns:
        201 with {message, channel}; 409 if the name is taken.
    """
    channel = service.create_channel(
        name=body.name,
        created_by=identity,
        description=body.description,
        is_private=body.isPrivate,
    )
    return JSONResponse(
        {"message": "Channel created", "channel": channel.model_dump(mode="json")},
        status_code=201,
    )


@router.get("/{channel_id}")
async def get_channel(channel_id: str, service: ChannelService = Depends(_service)) -> dict:
    return {"channel": service.get_channel(channel_id).model_dump(mode="json")}


@router.post("/{channel_id}/join")
async def join_channel(
    channel_id: str,
    identity: str = Depends(get_current_identity),
    service: ChannelService = Depends(_service),
) -> dict:
    channel = service.join(channel_id, identity)
    return {"message": "Joined channel", "channelId": channel_id, "memberCount": channel.member_count}


@router.post("/{channel_id}/leave")
async def leave_channel(
    channel_id: str,
    identity: str = Depends(get_current_identity),
    service: ChannelService = Depends(_service),
) -> dict:
    service.leave(channel_id, identity)
    return {"message": "Left channel", "channelId": channel_id}
