"""Lesson comments."""

from __future__ import annotations

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.db.models import Account, LessonComment
from coursehub.errors import AccessDenied, NotFound

logger = logging.getLogger(__name__)


async def add_comment(db: AsyncSession, account_id: uuid.UUID, lesson_id: uuid.UUID, content: str) -> LessonComment:
    comment = LessonComment(account_id=account_id, lesson_id=lesson_id, content=content.strip())
    db.add(comment)
    await db.commit()
    return comment


async def list_comments(db: AsyncSession, lesson_id: uuid.UUID, limit: int = 100) -> list[tuple[LessonComment, str]]:
    """Comments on a lesson with the author's name, oldest first."""
    result = await db.execute(
        select(LessonComment, Account.name)
        .join(Account, Account.id == LessonComment.account_id)
        .where(LessonComment.lesson_id == lesson_id)
        .order_by(LessonComment.created_at)
        .limit(limit)
    )
    return [(row[0], row[1]) for row in result.all()]


async def delete_comment(db: AsyncSession, account: Account, comment_id: uuid.UUID) -> None:
    """Delete a comment. Only its author or an admin may do so.

    The author's comment count drops with it; achievements already earned
    from that count are kept.

    Raises:
        NotFound: Unknown comment.
        AccessDenied: The caller neither wrote the comment nor is an admin.
    """
    comment = await db.get(LessonComment, comment_id)
    if comment is None:
        raise NotFound("Comment not found")
    if comment.account_id != account.id and not account.is_admin:
        raise AccessDenied
    await db.delete(comment)
    await db.commit()
    logger.info("Comment %s deleted by account %s", comment_id, account.id)
