"""Achievement engine: evaluates triggers and awards achievements exactly once."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coursehub.db.models import (
    AccountAchievement,
    AccountStat,
    AchievementDefinition,
    CourseModule,
    Entitlement,
    Lesson,
    LessonComment,
    LessonProgress,
)
from coursehub.db.upsert import insert_for
from coursehub.notifications.service import create_notification

logger = logging.getLogger(__name__)

LOGIN_STREAK_STAT = "login_streak"


class TriggerKind(str, Enum):
    """Trigger kinds with a dedicated metric. Any other string falls back to the supplied value."""

    COURSE_COMPLETED = "course_completed"
    LESSON_COMPLETED = "lesson_completed"
    ENROLLMENT = "enrollment"
    COMMENT = "comment"
    LOGIN_STREAK = "login_streak"


@dataclass(frozen=True)
class AchievementCheck:
    """A deferred achievement evaluation, run after the triggering write commits."""

    account_id: uuid.UUID
    trigger: str
    value: int | None = None


def _trigger_name(trigger: TriggerKind | str) -> str:
    return trigger.value if isinstance(trigger, TriggerKind) else str(trigger)


async def award_achievement(
    db: AsyncSession,
    account_id: uuid.UUID,
    achievement_id: uuid.UUID,
    now: datetime | None = None,
) -> bool:
    """Atomically mark an achievement earned.

    A single conditional upsert: inserts an earned row, or flips an existing
    unearned row to earned. Rows already earned are left untouched and return
    nothing, so exactly one concurrent caller observes True.
    """
    now = now or datetime.now(timezone.utc)
    stmt = insert_for(db, AccountAchievement).values(
        id=uuid.uuid4(),
        account_id=account_id,
        achievement_id=achievement_id,
        earned=True,
        earned_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["account_id", "achievement_id"],
        set_={"earned": True, "earned_at": stmt.excluded.earned_at},
        where=AccountAchievement.earned.is_(False),
    ).returning(AccountAchievement.id)
    result = await db.execute(stmt)
    return result.scalar_one_or_none() is not None


class AchievementEngine:
    """Computes per-account metrics and awards matching achievement definitions."""

    def __init__(self, db: AsyncSession, redis: object | None = None) -> None:
        self.db = db
        self.redis = redis

    # --- Metrics ---

    async def compute_metric(
        self,
        account_id: uuid.UUID,
        trigger: TriggerKind | str,
        value: int | None = None,
    ) -> int:
        """Current value of the metric a trigger kind is measured against."""
        name = _trigger_name(trigger)
        if name == TriggerKind.COURSE_COMPLETED.value:
            return await self._completed_courses(account_id)
        if name == TriggerKind.LESSON_COMPLETED.value:
            return await self._count(
                select(func.count(LessonProgress.id)).where(
                    LessonProgress.account_id == account_id,
                    LessonProgress.is_completed.is_(True),
                )
            )
        if name == TriggerKind.ENROLLMENT.value:
            return await self._count(
                select(func.count(func.distinct(Entitlement.course_id))).where(Entitlement.account_id == account_id)
            )
        if name == TriggerKind.COMMENT.value:
            return await self._count(
                select(func.count(LessonComment.id)).where(LessonComment.account_id == account_id)
            )
        if name == TriggerKind.LOGIN_STREAK.value:
            return await self._count(
                select(AccountStat.value).where(
                    AccountStat.account_id == account_id,
                    AccountStat.stat_type == LOGIN_STREAK_STAT,
                )
            )
        return value if value is not None else 1

    async def _count(self, stmt: object) -> int:
        result = await self.db.execute(stmt)  # type: ignore[arg-type]
        return int(result.scalar() or 0)

    async def _completed_courses(self, account_id: uuid.UUID) -> int:
        """Courses with at least one lesson where every lesson is completed."""
        totals = (
            select(
                CourseModule.course_id.label("course_id"),
                func.count(Lesson.id).label("total"),
            )
            .join(Lesson, Lesson.module_id == CourseModule.id)
            .group_by(CourseModule.course_id)
            .subquery()
        )
        done = (
            select(
                CourseModule.course_id.label("course_id"),
                func.count(LessonProgress.id).label("done"),
            )
            .select_from(LessonProgress)
            .join(Lesson, Lesson.id == LessonProgress.lesson_id)
            .join(CourseModule, CourseModule.id == Lesson.module_id)
            .where(
                LessonProgress.account_id == account_id,
                LessonProgress.is_completed.is_(True),
            )
            .group_by(CourseModule.course_id)
            .subquery()
        )
        stmt = (
            select(func.count())
            .select_from(done.join(totals, totals.c.course_id == done.c.course_id))
            .where(totals.c.total > 0, done.c.done >= totals.c.total)
        )
        return await self._count(stmt)

    # --- Awarding ---

    async def check_and_award(
        self,
        account_id: uuid.UUID,
        trigger: TriggerKind | str,
        value: int | None = None,
    ) -> list[AchievementDefinition]:
        """Award every active definition of this kind whose threshold is met.

        Returns only the definitions newly awarded by this call.
        """
        name = _trigger_name(trigger)
        metric = await self.compute_metric(account_id, name, value)

        result = await self.db.execute(
            select(AchievementDefinition)
            .where(
                AchievementDefinition.is_active.is_(True),
                AchievementDefinition.trigger_type == name,
                AchievementDefinition.trigger_value <= metric,
            )
            .order_by(AchievementDefinition.trigger_value)
        )
        candidates = list(result.scalars().all())

        awarded: list[AchievementDefinition] = []
        for definition in candidates:
            if await award_achievement(self.db, account_id, definition.id):
                awarded.append(definition)
        await self.db.commit()

        if awarded:
            logger.info(
                "Awarded %d achievement(s) to %s for %s (metric=%d)",
                len(awarded), account_id, name, metric,
            )
            await self._notify(account_id, awarded)
        return awarded

    async def _notify(self, account_id: uuid.UUID, awarded: list[AchievementDefinition]) -> None:
        """Best-effort notification; the awards are already committed."""
        try:
            for definition in awarded:
                await create_notification(
                    self.db,
                    account_id,
                    "achievement",
                    title=f'Achievement Unlocked: "{definition.name}"',
                    message=definition.description,
                    metadata={"achievement_id": str(definition.id), "icon": definition.icon},
                    redis=self.redis,
                )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            logger.warning("Failed to record achievement notification", exc_info=True)


async def run_achievement_checks(
    session_factory: async_sessionmaker[AsyncSession],
    checks: Sequence[AchievementCheck],
    redis: object | None = None,
) -> None:
    """Post-commit runner for deferred checks. Never raises."""
    for check in checks:
        try:
            async with session_factory() as db:
                engine = AchievementEngine(db, redis)
                await engine.check_and_award(check.account_id, check.trigger, check.value)
        except Exception:
            logger.exception("Achievement check failed (account=%s, trigger=%s)", check.account_id, check.trigger)


async def list_definitions(db: AsyncSession, include_inactive: bool = False) -> list[AchievementDefinition]:
    """List achievement definitions ordered by kind and threshold."""
    stmt = select(AchievementDefinition)
    if not include_inactive:
        stmt = stmt.where(AchievementDefinition.is_active.is_(True))
    result = await db.execute(
        stmt.order_by(AchievementDefinition.trigger_type, AchievementDefinition.trigger_value)
    )
    return list(result.scalars().all())


async def list_earned(
    db: AsyncSession, account_id: uuid.UUID
) -> list[tuple[AchievementDefinition, AccountAchievement]]:
    """Achievements an account has earned, most recent first."""
    result = await db.execute(
        select(AchievementDefinition, AccountAchievement)
        .join(AccountAchievement, AccountAchievement.achievement_id == AchievementDefinition.id)
        .where(
            AccountAchievement.account_id == account_id,
            AccountAchievement.earned.is_(True),
        )
        .order_by(AccountAchievement.earned_at.desc())
    )
    return [(row[0], row[1]) for row in result.all()]
