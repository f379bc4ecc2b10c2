"""Progress tracker: lesson progress upserts and course roll-up."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import case, func, null, select
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.achievements.engine import AchievementCheck, TriggerKind
from coursehub.db.models import CourseModule, CourseProgress, Lesson, LessonProgress
from coursehub.db.upsert import insert_for
from coursehub.errors import NotFound

logger = logging.getLogger(__name__)

# Largest percentage reported while at least one lesson is still open
MAX_INCOMPLETE_PERCENTAGE = 99.99


def compute_percentage(completed: int, total: int) -> float:
    """Course completion percentage, rounded to 2 dp.

    Returns 0 for an empty course and 100 only when every lesson is done.
    """
    if total <= 0:
        return 0.0
    if completed >= total:
        return 100.0
    return min(round(completed / total * 100, 2), MAX_INCOMPLETE_PERCENTAGE)


@dataclass
class ProgressResult:
    lesson_id: uuid.UUID
    course_id: uuid.UUID
    is_completed: bool
    progress: float
    total_lessons: int
    completed_lessons: int
    percentage: float
    course_completed: bool
    pending_checks: list[AchievementCheck] = field(default_factory=list)


class ProgressTracker:
    """Records lesson progress and keeps course progress in sync."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def _course_for_lesson(self, lesson_id: uuid.UUID) -> uuid.UUID:
        result = await self.db.execute(
            select(CourseModule.course_id)
            .join(Lesson, Lesson.module_id == CourseModule.id)
            .where(Lesson.id == lesson_id)
        )
        course_id = result.scalar_one_or_none()
        if course_id is None:
            raise NotFound("Lesson not found")
        return course_id

    async def _count_lessons(self, account_id: uuid.UUID, course_id: uuid.UUID) -> tuple[int, int]:
        """(total lessons in course, lessons the account has completed in it)."""
        total_result = await self.db.execute(
            select(func.count(Lesson.id))
            .join(CourseModule, CourseModule.id == Lesson.module_id)
            .where(CourseModule.course_id == course_id)
        )
        total = int(total_result.scalar() or 0)

        completed_result = await self.db.execute(
            select(func.count(LessonProgress.id))
            .join(Lesson, Lesson.id == LessonProgress.lesson_id)
            .join(CourseModule, CourseModule.id == Lesson.module_id)
            .where(
                CourseModule.course_id == course_id,
                LessonProgress.account_id == account_id,
                LessonProgress.is_completed.is_(True),
            )
        )
        completed = int(completed_result.scalar() or 0)
        return total, completed

    async def record_lesson_progress(
        self,
        account_id: uuid.UUID,
        lesson_id: uuid.UUID,
        is_completed: bool,
        progress: float,
    ) -> ProgressResult:
        """Upsert lesson progress, recompute course progress and commit.

        Achievement checks are returned for the caller to run after the
        commit; they are never run inside this transaction.

        Raises:
            NotFound: If the lesson does not exist.
        """
        course_id = await self._course_for_lesson(lesson_id)
        now = datetime.now(timezone.utc)
        progress = 100.0 if is_completed else max(0.0, min(float(progress), 100.0))

        lesson_stmt = insert_for(self.db, LessonProgress).values(
            id=uuid.uuid4(),
            account_id=account_id,
            lesson_id=lesson_id,
            is_completed=is_completed,
            progress=progress,
            started_at=now,
            completed_at=now if is_completed else None,
            last_accessed=now,
            updated_at=now,
        )
        excluded = lesson_stmt.excluded
        lesson_stmt = lesson_stmt.on_conflict_do_update(
            index_elements=["account_id", "lesson_id"],
            set_={
                "is_completed": excluded.is_completed,
                "progress": excluded.progress,
                # Keep the first completion time while the lesson stays completed
                "completed_at": case(
                    (excluded.is_completed, func.coalesce(LessonProgress.completed_at, excluded.completed_at)),
                    else_=null(),
                ),
                "last_accessed": excluded.last_accessed,
                "updated_at": excluded.updated_at,
            },
        )
        await self.db.execute(lesson_stmt)

        total, completed = await self._count_lessons(account_id, course_id)
        percentage = compute_percentage(completed, total)
        finished = total > 0 and completed >= total

        course_stmt = insert_for(self.db, CourseProgress).values(
            id=uuid.uuid4(),
            account_id=account_id,
            course_id=course_id,
            total_lessons=total,
            completed_lessons=completed,
            percentage=percentage,
            started_at=now,
            completed_at=now if finished else None,
            last_accessed=now,
            updated_at=now,
        )
        course_stmt = course_stmt.on_conflict_do_update(
            index_elements=["account_id", "course_id"],
            set_={
                "total_lessons": course_stmt.excluded.total_lessons,
                "completed_lessons": course_stmt.excluded.completed_lessons,
                "percentage": course_stmt.excluded.percentage,
                # Never cleared once set
                "completed_at": func.coalesce(CourseProgress.completed_at, course_stmt.excluded.completed_at),
                "last_accessed": course_stmt.excluded.last_accessed,
                "updated_at": course_stmt.excluded.updated_at,
            },
        )
        await self.db.execute(course_stmt)
        await self.db.commit()

        checks = [AchievementCheck(account_id, TriggerKind.LESSON_COMPLETED.value)]
        if percentage >= 100:
            checks.append(AchievementCheck(account_id, TriggerKind.COURSE_COMPLETED.value))

        logger.debug(
            "Progress for %s in course %s: %d/%d (%.2f%%)",
            account_id, course_id, completed, total, percentage,
        )
        return ProgressResult(
            lesson_id=lesson_id,
            course_id=course_id,
            is_completed=is_completed,
            progress=progress,
            total_lessons=total,
            completed_lessons=completed,
            percentage=percentage,
            course_completed=finished,
            pending_checks=checks,
        )

    async def get_course_progress(self, account_id: uuid.UUID, course_id: uuid.UUID) -> CourseProgress | None:
        result = await self.db.execute(
            select(CourseProgress).where(
                CourseProgress.account_id == account_id,
                CourseProgress.course_id == course_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_lesson_progress(self, account_id: uuid.UUID, course_id: uuid.UUID) -> list[LessonProgress]:
        """Lesson progress rows of one course, in curriculum order."""
        result = await self.db.execute(
            select(LessonProgress)
            .join(Lesson, Lesson.id == LessonProgress.lesson_id)
            .join(CourseModule, CourseModule.id == Lesson.module_id)
            .where(
                CourseModule.course_id == course_id,
                LessonProgress.account_id == account_id,
            )
            .order_by(CourseModule.position, Lesson.position)
        )
        return list(result.scalars().all())
