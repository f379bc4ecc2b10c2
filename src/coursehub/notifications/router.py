"""Notification API endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.auth.dependencies import get_current_account
from coursehub.database import get_session
from coursehub.db.models import Account
from coursehub.errors import NotFound
from coursehub.notifications.service import get_notifications, mark_all_as_read, mark_as_read

router = APIRouter(prefix="/api/v1", tags=["Notifications"])


class NotificationResponse(BaseModel):
    id: uuid.UUID
    type: str
    title: str
    message: str | None = None
    metadata: dict[str, Any] = {}
    read: bool
    timestamp: datetime


class NotificationListResponse(BaseModel):
    notifications: list[NotificationResponse]
    total: int
    page: int
    per_page: int


@router.get("/notifications", response_model=NotificationListResponse)
async def list_notifications(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
) -> NotificationListResponse:
    """List the account's notifications (paginated)."""
    notifications, total = await get_notifications(db, account.id, page, per_page)
    return NotificationListResponse(
        notifications=[
            NotificationResponse(
                id=n.id,
                type=n.type,
                title=n.title,
                message=n.message,
                metadata=n.notification_metadata or {},
                read=n.read,
                timestamp=n.created_at,
            )
            for n in notifications
        ],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.post("/notifications/{notification_id}/read")
async def mark_read(
    notification_id: uuid.UUID,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
) -> dict[str, str]:
    """Mark a single notification as read."""
    if not await mark_as_read(db, account.id, notification_id):
        raise NotFound("Notification not found")
    await db.commit()
    return {"detail": "Notification marked as read"}


@router.post("/notifications/read-all")
async def mark_all_read(
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
) -> dict[str, str]:
    count = await mark_all_as_read(db, account.id)
    await db.commit()
    return {"detail": f"Marked {count} notifications as read"}
