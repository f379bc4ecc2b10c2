"""Default achievement catalogue."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.achievements.engine import TriggerKind
from coursehub.db.models import AchievementDefinition
from coursehub.db.upsert import insert_for

logger = logging.getLogger(__name__)

ACHIEVEMENT_SEED_DATA: list[dict] = [
    # Learning
    {
        "name": "First Lesson",
        "description": "Complete your first lesson",
        "icon": "book-open",
        "trigger_type": TriggerKind.LESSON_COMPLETED.value,
        "trigger_value": 1,
    },
    {
        "name": "Ten Lessons",
        "description": "Complete ten lessons across any courses",
        "icon": "books",
        "trigger_type": TriggerKind.LESSON_COMPLETED.value,
        "trigger_value": 10,
    },
    {
        "name": "First Course",
        "description": "Finish every lesson of a course",
        "icon": "trophy",
        "trigger_type": TriggerKind.COURSE_COMPLETED.value,
        "trigger_value": 1,
    },
    {
        "name": "Course Collector",
        "description": "Finish five courses",
        "icon": "medal",
        "trigger_type": TriggerKind.COURSE_COMPLETED.value,
        "trigger_value": 5,
    },
    # Enrollment
    {
        "name": "First Enrollment",
        "description": "Enroll in your first course",
        "icon": "ticket",
        "trigger_type": TriggerKind.ENROLLMENT.value,
        "trigger_value": 1,
    },
    # Community
    {
        "name": "First Comment",
        "description": "Join the discussion on a lesson",
        "icon": "message",
        "trigger_type": TriggerKind.COMMENT.value,
        "trigger_value": 1,
    },
    # Habits
    {
        "name": "Week Streak",
        "description": "Log in seven days in a row",
        "icon": "flame",
        "trigger_type": TriggerKind.LOGIN_STREAK.value,
        "trigger_value": 7,
    },
]


async def seed_achievements(db: AsyncSession) -> int:
    """Upsert the default achievement definitions by name. Returns the number seeded."""
    seeded = 0
    for data in ACHIEVEMENT_SEED_DATA:
        stmt = insert_for(db, AchievementDefinition).values(**data)
        stmt = stmt.on_conflict_do_update(
            index_elements=["name"],
            set_={
                "description": stmt.excluded.description,
                "icon": stmt.excluded.icon,
                "trigger_type": stmt.excluded.trigger_type,
                "trigger_value": stmt.excluded.trigger_value,
            },
        )
        await db.execute(stmt)
        seeded += 1

    await db.commit()
    logger.info("Seeded %d achievement definitions", seeded)
    return seeded
