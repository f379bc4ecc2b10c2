"""Notification creation and delivery.

Notifications are persisted in the database and pushed to the account's
Redis pub/sub channel when Redis is available.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.db.models import Notification
from coursehub.redis_client import publish_json

VALID_TYPES = {"achievement", "payment", "subscription", "system"}


def channel_for(account_id: uuid.UUID) -> str:
    return f"notifications:account:{account_id}"


async def create_notification(
    db: AsyncSession,
    account_id: uuid.UUID,
    type_: str,
    title: str,
    message: str | None = None,
    metadata: dict[str, Any] | None = None,
    redis: Any | None = None,
) -> Notification:
    """Create a notification and push it via Redis pub/sub."""
    if type_ not in VALID_TYPES:
        raise ValueError(f"Invalid notification type: {type_}. Must be one of {VALID_TYPES}")

    notification = Notification(
        account_id=account_id,
        type=type_,
        title=title,
        message=message,
        notification_metadata=metadata or {},
    )
    db.add(notification)
    await db.flush()

    if redis is not None:
        payload = {
            "event": "notification",
            "data": {
                "id": str(notification.id),
                "type": notification.type,
                "title": notification.title,
                "message": notification.message,
                "metadata": notification.notification_metadata,
                "timestamp": notification.created_at.isoformat() if notification.created_at else None,
            },
        }
        await publish_json(redis, channel_for(account_id), payload)

    return notification


async def get_notifications(
    db: AsyncSession,
    account_id: uuid.UUID,
    page: int = 1,
    per_page: int = 20,
) -> tuple[list[Notification], int]:
    """Get an account's notifications (paginated, most recent first)."""
    offset = (page - 1) * per_page

    total_result = await db.execute(
        select(func.count()).select_from(Notification).where(Notification.account_id == account_id)
    )
    total = total_result.scalar_one()

    result = await db.execute(
        select(Notification)
        .where(Notification.account_id == account_id)
        .order_by(Notification.created_at.desc())
        .offset(offset)
        .limit(per_page)
    )
    return list(result.scalars().all()), total


async def mark_as_read(db: AsyncSession, account_id: uuid.UUID, notification_id: uuid.UUID) -> bool:
    """Mark one of the account's notifications as read. Returns True if found."""
    result = await db.execute(
        update(Notification)
        .where(Notification.id == notification_id, Notification.account_id == account_id)
        .values(read=True)
    )
    await db.flush()
    return result.rowcount > 0


async def mark_all_as_read(db: AsyncSession, account_id: uuid.UUID) -> int:
    """Mark all unread notifications as read. Returns count updated."""
    result = await db.execute(
        update(Notification)
        .where(Notification.account_id == account_id, Notification.read.is_(False))
        .values(read=True)
    )
    await db.flush()
    return result.rowcount
