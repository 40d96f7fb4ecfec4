"""In-app notification records and push device registrations."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFound
from app.models.notification import Notification
from app.models.role import Role
from app.models.user import User
from app.models.user_device import UserDevice
from app.models.user_role import UserRole


def add_notification(
    db: AsyncSession,
    *,
    user_id,
    type: str,
    title: str,
    body: str,
    data: dict[str, Any] | None = None,
    loan_id=None,
) -> Notification:
    notification = Notification(
        user_id=user_id,
        loan_application_id=loan_id,
        type=type,
        title=title,
        body=body,
        data=dict(data or {}),
        is_read=False,
        created_at=datetime.now(timezone.utc),
    )
    db.add(notification)
    return notification


async def user_ids_with_role(db: AsyncSession, role_name: str) -> list[UUID]:
    stmt = (
        select(User.id)
        .join(UserRole, UserRole.user_id == User.id)
        .join(Role, Role.id == UserRole.role_id)
        .where(Role.name == role_name, User.is_active.is_(True))
        .order_by(User.id)
    )
    result = await db.execute(stmt)
    return [row[0] for row in result.all()]


async def active_device_tokens(db: AsyncSession, user_id) -> list[str]:
    stmt = select(UserDevice.fcm_token).where(
        UserDevice.user_id == user_id, UserDevice.is_active.is_(True)
    )
    result = await db.execute(stmt)
    return [row[0] for row in result.all()]


async def list_notifications(
    db: AsyncSession,
    user_id,
    *,
    unread_only: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Notification], int]:
    conditions = [Notification.user_id == user_id]
    if unread_only:
        conditions.append(Notification.is_read.is_(False))
    count_stmt = select(func.count()).select_from(Notification).where(*conditions)
    total = int((await db.execute(count_stmt)).scalar_one_or_none() or 0)
    stmt = (
        select(Notification)
        .where(*conditions)
        .order_by(Notification.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all()), total


async def unread_count(db: AsyncSession, user_id) -> int:
    stmt = select(func.count()).select_from(Notification).where(
        Notification.user_id == user_id, Notification.is_read.is_(False)
    )
    return int((await db.execute(stmt)).scalar_one_or_none() or 0)


async def mark_read(db: AsyncSession, user_id, notification_id) -> Notification:
    notification = await db.get(Notification, notification_id)
    # Someone else's notification is reported as missing.
    if notification is None or notification.user_id != user_id:
        raise NotFound.for_resource("notification", notification_id)
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = datetime.now(timezone.utc)
        await db.commit()
    return notification


async def mark_all_read(db: AsyncSession, user_id) -> int:
    stmt = select(Notification).where(
        Notification.user_id == user_id, Notification.is_read.is_(False)
    )
    result = await db.execute(stmt)
    unread = result.scalars().all()
    now = datetime.now(timezone.utc)
    for notification in unread:
        notification.is_read = True
        notification.read_at = now
    if unread:
        await db.commit()
    return len(unread)


async def register_device(
    db: AsyncSession, user_id, fcm_token: str, device_type: str | None = None
) -> UserDevice:
    """Create or refresh a token; a token moves to the latest user that registers it."""
    stmt = select(UserDevice).where(UserDevice.fcm_token == fcm_token)
    device = (await db.execute(stmt)).scalar_one_or_none()
    now = datetime.now(timezone.utc)
    if device is None:
        device = UserDevice(
            user_id=user_id,
            fcm_token=fcm_token,
            device_type=device_type,
            is_active=True,
            last_seen_at=now,
        )
        db.add(device)
    else:
        device.user_id = user_id
        device.is_active = True
        device.last_seen_at = now
        if device_type:
            device.device_type = device_type
    await db.commit()
    await db.refresh(device)
    return device


async def deactivate_device(db: AsyncSession, user_id, fcm_token: str) -> UserDevice:
    stmt = select(UserDevice).where(
        UserDevice.fcm_token == fcm_token, UserDevice.user_id == user_id
    )
    device = (await db.execute(stmt)).scalar_one_or_none()
    if device is None:
        raise NotFound("Device not registered", details={"resource": "user_device"})
    device.is_active = False
    await db.commit()
    return device
