# File: src/nexustrack/interfaces/api/routers/subscriptions.py
# Administrative surface for a single Discord channel: track, list, untrack,
# trigger update. All routes require the X-API-Key header when API_KEY is set.

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from nexustrack.application.services.subscription_manager import SubscriptionManager
from nexustrack.application.services.tracking_service import TrackingService
from nexustrack.domain.errors import TrackingError
from nexustrack.interfaces.api.deps import get_subscription_manager, get_tracking_service, require_api_key
from nexustrack.interfaces.api.schemas import (
    ItemOut, StatusOut, TrackIn, TriggerIn, TriggerOut, UntrackIn, UntrackOut,
)

log = logging.getLogger(__name__)
router = APIRouter(tags=["Subscriptions"], dependencies=[Depends(require_api_key)])


@router.get("/channels/{guild_id}/{channel_id}/items", response_model=List[ItemOut])
def list_items(guild_id: str, channel_id: str, service: TrackingService = Depends(get_tracking_service)):
    return [ItemOut.from_item(i) for i in service.list_items(guild_id, channel_id)]


@router.post("/channels/{guild_id}/{channel_id}/items", response_model=ItemOut, status_code=201)
async def track(
    guild_id: str,
    channel_id: str,
    payload: TrackIn,
    service: TrackingService = Depends(get_tracking_service),
):
    try:
        item = await service.track(
            guild_id, channel_id, payload.type, payload.entity,
            owner=payload.owner, options=payload.options(),
        )
    except TrackingError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return ItemOut.from_item(item)


@router.post("/channels/{guild_id}/{channel_id}/untrack", response_model=UntrackOut)
def untrack(
    guild_id: str,
    channel_id: str,
    payload: UntrackIn,
    service: TrackingService = Depends(get_tracking_service),
):
    try:
        return service.untrack(guild_id, channel_id, payload.item_ids)
    except TrackingError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/channels/{guild_id}/{channel_id}/trigger-update", response_model=TriggerOut)
async def trigger_update(
    guild_id: str,
    channel_id: str,
    payload: TriggerIn,
    service: TrackingService = Depends(get_tracking_service),
):
    try:
        return await service.trigger_update(
            guild_id, channel_id, date=payload.date, time=payload.time, timezone=payload.timezone,
        )
    except TrackingError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/status", response_model=StatusOut)
async def status(manager: SubscriptionManager = Depends(get_subscription_manager)):
    return manager.status()


@router.post("/status/pause", response_model=StatusOut)
async def pause(manager: SubscriptionManager = Depends(get_subscription_manager)):
    manager.pause()
    return manager.status()


@router.post("/status/resume", response_model=StatusOut)
async def resume(manager: SubscriptionManager = Depends(get_subscription_manager)):
    manager.resume()
    return manager.status()
