"""Course access endpoints."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.auth.dependencies import get_current_account
from coursehub.database import get_session
from coursehub.db.models import Account, Course
from coursehub.entitlements.service import (
    AccessDecision,
    has_access,
    list_course_lessons,
    list_purchased_course_ids,
    require_lesson_access,
)
from coursehub.errors import NotFound

router = APIRouter(prefix="/api/v1", tags=["Entitlements"])


async def _get_course(db: AsyncSession, course_id: uuid.UUID) -> Course:
    course = await db.get(Course, course_id)
    if course is None or not course.is_published:
        raise NotFound("Course not found")
    return course


@router.get("/courses/{course_id}/access")
async def check_access(
    course_id: uuid.UUID,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
) -> dict:
    """Whether the caller may view this course's paid content."""
    await _get_course(db, course_id)
    decision = await has_access(db, account, course_id)
    return {"course_id": str(course_id), "granted": decision is AccessDecision.GRANTED}


@router.get("/courses/{course_id}/lessons")
async def course_outline(
    course_id: uuid.UUID,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
) -> dict:
    """Curriculum outline; lessons the caller cannot open are marked locked."""
    course = await _get_course(db, course_id)
    granted = await has_access(db, account, course_id) is AccessDecision.GRANTED

    modules: dict[uuid.UUID, dict] = {}
    for module, lesson in await list_course_lessons(db, course_id):
        entry = modules.setdefault(
            module.id,
            {"id": str(module.id), "title": module.title, "position": module.position, "lessons": []},
        )
        entry["lessons"].append({
            "id": str(lesson.id),
            "title": lesson.title,
            "position": lesson.position,
            "is_preview": lesson.is_preview,
            "locked": not (granted or lesson.is_preview),
        })

    return {
        "course_id": str(course.id),
        "title": course.title,
        "granted": granted,
        "modules": list(modules.values()),
    }


@router.get("/lessons/{lesson_id}")
async def get_lesson(
    lesson_id: uuid.UUID,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
) -> dict:
    """Lesson content. 403 unless it is a preview or the caller has course access."""
    lesson, course_id = await require_lesson_access(db, account, lesson_id)
    return {
        "id": str(lesson.id),
        "course_id": str(course_id),
        "title": lesson.title,
        "content": lesson.content,
        "is_preview": lesson.is_preview,
    }


@router.get("/me/courses")
async def my_courses(
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
) -> dict:
    """Courses the caller has purchased."""
    course_ids = await list_purchased_course_ids(db, account.id)
    return {"course_ids": [str(cid) for cid in course_ids]}
