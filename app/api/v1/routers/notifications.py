from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.db.session import get_db
from app.schemas.notifications import (
    DeviceOut,
    DeviceRegisterRequest,
    NotificationListResponse,
    NotificationOut,
    UnreadCountResponse,
)
from app.services.notifications import inbox

router = APIRouter(
    prefix="/notifications",
    tags=["notifications"],
    dependencies=[Depends(deps.require_menu_access)],
)


@router.get("", response_model=NotificationListResponse, summary="My notifications, newest first")
async def list_notifications(
    unread_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    actor: deps.Actor = Depends(deps.get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> NotificationListResponse:
    items, total = await inbox.list_notifications(
        db, actor.user_id, unread_only=unread_only, limit=limit, offset=offset
    )
    return NotificationListResponse(
        items=[NotificationOut.model_validate(item) for item in items],
        total=total,
    )


@router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count(
    actor: deps.Actor = Depends(deps.get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> UnreadCountResponse:
    return UnreadCountResponse(count=await inbox.unread_count(db, actor.user_id))


@router.post("/{notification_id}/read", response_model=NotificationOut)
async def mark_read(
    notification_id: UUID,
    actor: deps.Actor = Depends(deps.get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> NotificationOut:
    notification = await inbox.mark_read(db, actor.user_id, notification_id)
    return NotificationOut.model_validate(notification)


@router.post("/read-all", response_model=UnreadCountResponse, summary="Mark all as read")
async def mark_all_read(
    actor: deps.Actor = Depends(deps.get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> UnreadCountResponse:
    # ``count`` is the number of notifications that changed.
    return UnreadCountResponse(count=await inbox.mark_all_read(db, actor.user_id))


@router.post("/devices", response_model=DeviceOut, summary="Register a push device token")
async def register_device(
    payload: DeviceRegisterRequest,
    actor: deps.Actor = Depends(deps.get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> DeviceOut:
    device = await inbox.register_device(db, actor.user_id, payload.fcm_token, payload.device_type)
    return DeviceOut.model_validate(device)


@router.delete("/devices/{fcm_token}", response_model=DeviceOut, summary="Deactivate a push device token")
async def deactivate_device(
    fcm_token: str,
    actor: deps.Actor = Depends(deps.get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> DeviceOut:
    device = await inbox.deactivate_device(db, actor.user_id, fcm_token)
    return DeviceOut.model_validate(device)
