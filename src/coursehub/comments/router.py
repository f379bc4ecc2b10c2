"""Lesson comment endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime

from fastapi import APIRouter, BackgroundTasks, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.achievements.engine import AchievementCheck, TriggerKind
from coursehub.auth.dependencies import get_current_account
from coursehub.comments.service import add_comment, delete_comment, list_comments
from coursehub.database import get_session
from coursehub.db.models import Account
from coursehub.dependencies import schedule_achievement_checks
from coursehub.entitlements.service import require_lesson_access

router = APIRouter(prefix="/api/v1/lessons", tags=["Comments"])


class CommentRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)


class CommentResponse(BaseModel):
    id: uuid.UUID
    lesson_id: uuid.UUID
    author: str
    content: str
    created_at: datetime


@router.post("/{lesson_id}/comments", response_model=CommentResponse, status_code=201)
async def post_comment(
    lesson_id: uuid.UUID,
    body: CommentRequest,
    background_tasks: BackgroundTasks,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
) -> CommentResponse:
    await require_lesson_access(db, account, lesson_id)
    comment = await add_comment(db, account.id, lesson_id, body.content)
    schedule_achievement_checks(background_tasks, [AchievementCheck(account.id, TriggerKind.COMMENT.value)])
    return CommentResponse(
        id=comment.id,
        lesson_id=comment.lesson_id,
        author=account.name,
        content=comment.content,
        created_at=comment.created_at,
    )


@router.get("/{lesson_id}/comments", response_model=list[CommentResponse])
async def get_comments(
    lesson_id: uuid.UUID,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
) -> list[CommentResponse]:
    await require_lesson_access(db, account, lesson_id)
    return [
        CommentResponse(
            id=comment.id,
            lesson_id=comment.lesson_id,
            author=author,
            content=comment.content,
            created_at=comment.created_at,
        )
        for comment, author in await list_comments(db, lesson_id)
    ]


@router.delete("/comments/{comment_id}", status_code=204)
async def remove_comment(
    comment_id: uuid.UUID,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
) -> None:
    """Delete a comment (author or admin)."""
    await delete_comment(db, account, comment_id)
