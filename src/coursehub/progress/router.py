"""Progress endpoints."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.auth.dependencies import get_current_account
from coursehub.database import get_session
from coursehub.db.models import Account, Course
from coursehub.dependencies import schedule_achievement_checks
from coursehub.entitlements.service import require_lesson_access
from coursehub.errors import NotFound
from coursehub.progress.schemas import (
    CourseProgressResponse,
    LessonProgressItem,
    LessonProgressRequest,
    LessonProgressResponse,
)
from coursehub.progress.service import ProgressTracker

router = APIRouter(prefix="/api/v1", tags=["Progress"])


@router.post("/lessons/{lesson_id}/progress", response_model=LessonProgressResponse)
async def record_progress(
    lesson_id: uuid.UUID,
    body: LessonProgressRequest,
    background_tasks: BackgroundTasks,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
) -> LessonProgressResponse:
    """Record lesson progress; achievement checks run after the commit."""
    await require_lesson_access(db, account, lesson_id)

    tracker = ProgressTracker(db)
    result = await tracker.record_lesson_progress(account.id, lesson_id, body.is_completed, body.progress)
    schedule_achievement_checks(background_tasks, result.pending_checks)

    return LessonProgressResponse(
        lesson_id=result.lesson_id,
        course_id=result.course_id,
        is_completed=result.is_completed,
        progress=result.progress,
        total_lessons=result.total_lessons,
        completed_lessons=result.completed_lessons,
        percentage=result.percentage,
        course_completed=result.course_completed,
    )


@router.get("/courses/{course_id}/progress", response_model=CourseProgressResponse)
async def course_progress(
    course_id: uuid.UUID,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
) -> CourseProgressResponse:
    """The caller's progress in a course (zeros if never started)."""
    if await db.get(Course, course_id) is None:
        raise NotFound("Course not found")

    tracker = ProgressTracker(db)
    summary = await tracker.get_course_progress(account.id, course_id)
    lessons = [
        LessonProgressItem(
            lesson_id=row.lesson_id,
            is_completed=row.is_completed,
            progress=row.progress,
            completed_at=row.completed_at,
            last_accessed=row.last_accessed,
        )
        for row in await tracker.get_lesson_progress(account.id, course_id)
    ]
    if summary is None:
        return CourseProgressResponse(course_id=course_id, lessons=lessons)
    return CourseProgressResponse(
        course_id=course_id,
        total_lessons=summary.total_lessons,
        completed_lessons=summary.completed_lessons,
        percentage=summary.percentage,
        started_at=summary.started_at,
        completed_at=summary.completed_at,
        lessons=lessons,
    )
