"""Entitlement resolver: may this account view this course's paid content?"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.db.models import Account, CourseModule, Entitlement, Lesson, Subscription
from coursehub.db.upsert import insert_for
from coursehub.errors import AccessDenied, NotFound

logger = logging.getLogger(__name__)


class AccessDecision(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"


async def has_active_subscription(db: AsyncSession, account_id: uuid.UUID, now: datetime | None = None) -> bool:
    """Active subscription whose end time is unset or still in the future."""
    now = now or datetime.now(timezone.utc)
    result = await db.execute(
        select(Subscription.id)
        .where(
            Subscription.account_id == account_id,
            Subscription.is_active.is_(True),
            or_(Subscription.end_time.is_(None), Subscription.end_time > now),
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def has_purchase(db: AsyncSession, account_id: uuid.UUID, course_id: uuid.UUID) -> bool:
    result = await db.execute(
        select(Entitlement.id).where(
            Entitlement.account_id == account_id,
            Entitlement.course_id == course_id,
        )
    )
    return result.scalar_one_or_none() is not None


async def has_access(
    db: AsyncSession,
    account: Account,
    course_id: uuid.UUID,
    now: datetime | None = None,
) -> AccessDecision:
    """Decide course access.

    Rules in precedence order, first match wins:
    1. admin role
    2. active, unexpired subscription
    3. purchase record for the course
    """
    if account.is_admin:
        return AccessDecision.GRANTED
    if await has_active_subscription(db, account.id, now):
        return AccessDecision.GRANTED
    if await has_purchase(db, account.id, course_id):
        return AccessDecision.GRANTED
    return AccessDecision.DENIED


async def grant_entitlement(
    db: AsyncSession,
    account_id: uuid.UUID,
    course_id: uuid.UUID,
    payment_id: uuid.UUID | None = None,
) -> bool:
    """Create the purchase record. Returns False if it already existed.

    Does not commit.
    """
    stmt = (
        insert_for(db, Entitlement)
        .values(id=uuid.uuid4(), account_id=account_id, course_id=course_id, payment_id=payment_id)
        .on_conflict_do_nothing(index_elements=["account_id", "course_id"])
        .returning(Entitlement.id)
    )
    result = await db.execute(stmt)
    created = result.scalar_one_or_none() is not None
    if created:
        logger.info("Granted course %s to account %s", course_id, account_id)
    return created


async def list_purchased_course_ids(db: AsyncSession, account_id: uuid.UUID) -> list[uuid.UUID]:
    result = await db.execute(
        select(Entitlement.course_id)
        .where(Entitlement.account_id == account_id)
        .order_by(Entitlement.purchased_at.desc())
    )
    return list(result.scalars().all())


async def get_lesson_course(db: AsyncSession, lesson_id: uuid.UUID) -> tuple[Lesson, uuid.UUID]:
    """Resolve a lesson and the course it belongs to.

    Raises:
        NotFound: If the lesson does not exist.
    """
    result = await db.execute(
        select(Lesson, CourseModule.course_id)
        .join(CourseModule, CourseModule.id == Lesson.module_id)
        .where(Lesson.id == lesson_id)
    )
    row = result.first()
    if row is None:
        raise NotFound("Lesson not found")
    return row[0], row[1]


async def require_lesson_access(db: AsyncSession, account: Account, lesson_id: uuid.UUID) -> tuple[Lesson, uuid.UUID]:
    """Preview lessons are open to every account; others need course access.

    Raises:
        NotFound: Unknown lesson.
        AccessDenied: No rule grants access.
    """
    lesson, course_id = await get_lesson_course(db, lesson_id)
    if not lesson.is_preview and await has_access(db, account, course_id) is AccessDecision.DENIED:
        raise AccessDenied
    return lesson, course_id


async def list_course_lessons(db: AsyncSession, course_id: uuid.UUID) -> list[tuple[CourseModule, Lesson]]:
    """All lessons of a course in curriculum order."""
    result = await db.execute(
        select(CourseModule, Lesson)
        .join(Lesson, Lesson.module_id == CourseModule.id)
        .where(CourseModule.course_id == course_id)
        .order_by(CourseModule.position, Lesson.position)
    )
    return [(row[0], row[1]) for row in result.all()]
