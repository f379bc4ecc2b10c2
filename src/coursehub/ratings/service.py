"""Course ratings: one 1-5 star rating per account and course."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.db.models import CourseRating
from coursehub.db.upsert import insert_for

logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 5


@dataclass
class RatingSummary:
    course_id: uuid.UUID
    average: float | None
    count: int
    own_rating: int | None = None
    own_review: str | None = None


async def rate_course(
    db: AsyncSession,
    account_id: uuid.UUID,
    course_id: uuid.UUID,
    rating: int,
    review: str | None = None,
) -> CourseRating:
    """Create the account's rating for a course, or replace it. Does not commit."""
    if not MIN_RATING <= rating <= MAX_RATING:
        raise ValueError(f"Rating must be between {MIN_RATING} and {MAX_RATING}")

    now = datetime.now(timezone.utc)
    if review is not None:
        review = review.strip() or None
    stmt = insert_for(db, CourseRating).values(
        id=uuid.uuid4(),
        course_id=course_id,
        account_id=account_id,
        rating=rating,
        review=review,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["course_id", "account_id"],
        set_={"rating": rating, "review": review, "updated_at": now},
    ).returning(CourseRating.id)
    rating_id = (await db.execute(stmt)).scalar_one()

    logger.info("Account %s rated course %s: %d", account_id, course_id, rating)
    result = await db.execute(
        select(CourseRating).where(CourseRating.id == rating_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def get_rating_summary(
    db: AsyncSession, course_id: uuid.UUID, account_id: uuid.UUID | None = None
) -> RatingSummary:
    """Average and count for a course, plus the given account's own rating."""
    row = (
        await db.execute(
            select(func.avg(CourseRating.rating), func.count(CourseRating.id)).where(
                CourseRating.course_id == course_id
            )
        )
    ).one()
    average = round(float(row[0]), 2) if row[0] is not None else None
    summary = RatingSummary(course_id=course_id, average=average, count=int(row[1]))

    if account_id is not None:
        own = await db.scalar(
            select(CourseRating).where(
                CourseRating.course_id == course_id,
                CourseRating.account_id == account_id,
            )
        )
        if own is not None:
            summary.own_rating = own.rating
            summary.own_review = own.review
    return summary
