import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from circle_access.db.session import get_db
from circle_access.db.models import Channel, User
from circle_access.schemas.stream import (
    ProvisionChannelResult,
    ResyncResult,
    StreamTokenResponse,
    SyncChannelRequest,
    SyncSupporterRequest,
    SyncSupporterResult,
)
from circle_access.services.channel_sync import (
    resync_subscriber_channels,
    sync_channel,
    sync_subscriber_across_creator_channels,
)
from circle_access.services.stream_chat import StreamChatError, stream_client
from circle_access.services.supporters import get_supporter
from circle_access.utils.deps import get_current_user

log = logging.getLogger("stream_api")

router = APIRouter(prefix="/stream", tags=["stream"])


@router.get("/token", response_model=StreamTokenResponse)
async def get_stream_token(current_user: User = Depends(get_current_user)):
    try:
        token = stream_client.create_user_token(current_user.id)
    except StreamChatError as e:
        log.error("Failed to create chat token: %s", e)
        raise HTTPException(status_code=503, detail="Chat service not configured")
    return StreamTokenResponse(user_id=current_user.id, token=token, api_key=stream_client.api_key)


@router.post("/sync-supporter", response_model=SyncSupporterResult)
async def sync_supporter(
    req: SyncSupporterRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    supporter = await get_supporter(db, current_user.id, req.creator_id)
    if supporter is None or not supporter.is_active:
        raise HTTPException(status_code=404, detail="No active membership for this creator")

    result = await sync_subscriber_across_creator_channels(
        db,
        current_user.id,
        req.creator_id,
        supporter.tier_level,
        announce=req.announce,
    )
    if not result.success:
        raise HTTPException(status_code=500, detail=result.error or "Failed to sync channels")
    return result


@router.post("/channels/{channel_id}/sync", response_model=ProvisionChannelResult)
async def sync_channel_route(
    channel_id: str,
    req: SyncChannelRequest | None = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    channel = await db.get(Channel, channel_id)
    if channel is None:
        raise HTTPException(status_code=404, detail="Channel not found")
    if channel.creator_id != current_user.id:
        raise HTTPException(status_code=403, detail="Only the channel owner can sync it")

    result = await sync_channel(db, channel_id, force=bool(req and req.force))
    if not result.success:
        raise HTTPException(status_code=502, detail=result.error or "Failed to sync channel")
    return result


@router.post("/resync-my-channels", response_model=ResyncResult)
async def resync_my_channels(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await resync_subscriber_channels(db, current_user.id)
