"""Course rating endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.auth.dependencies import get_current_account
from coursehub.database import get_session
from coursehub.db.models import Account, Course
from coursehub.entitlements.service import AccessDecision, has_access
from coursehub.errors import AccessDenied, NotFound
from coursehub.ratings.service import MAX_RATING, MIN_RATING, get_rating_summary, rate_course

router = APIRouter(prefix="/api/v1/courses", tags=["Ratings"])


class RatingRequest(BaseModel):
    rating: int = Field(..., ge=MIN_RATING, le=MAX_RATING)
    review: str | None = Field(None, max_length=5000)


class RatingResponse(BaseModel):
    course_id: uuid.UUID
    rating: int
    review: str | None = None
    updated_at: datetime


class RatingSummaryResponse(BaseModel):
    course_id: uuid.UUID
    average: float | None = None
    count: int
    own_rating: int | None = None
    own_review: str | None = None


async def _published_course(db: AsyncSession, course_id: uuid.UUID) -> Course:
    course = await db.get(Course, course_id)
    if course is None or not course.is_published:
        raise NotFound("Course not found")
    return course


@router.put("/{course_id}/rating", response_model=RatingResponse)
async def put_rating(
    course_id: uuid.UUID,
    body: RatingRequest,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
) -> RatingResponse:
    """Rate a course the caller has access to; rating again replaces the earlier one."""
    await _published_course(db, course_id)
    if await has_access(db, account, course_id) is AccessDecision.DENIED:
        raise AccessDenied

    rating = await rate_course(db, account.id, course_id, body.rating, body.review)
    await db.commit()
    return RatingResponse(
        course_id=rating.course_id,
        rating=rating.rating,
        review=rating.review,
        updated_at=rating.updated_at,
    )


@router.get("/{course_id}/rating", response_model=RatingSummaryResponse)
async def get_rating(
    course_id: uuid.UUID,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
) -> RatingSummaryResponse:
    await _published_course(db, course_id)
    summary = await get_rating_summary(db, course_id, account.id)
    return RatingSummaryResponse(
        course_id=summary.course_id,
        average=summary.average,
        count=summary.count,
        own_rating=summary.own_rating,
        own_review=summary.own_review,
    )
