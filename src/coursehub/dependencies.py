"""Shared FastAPI dependencies and request helpers."""

from collections.abc import Sequence

from fastapi import BackgroundTasks

from coursehub.achievements.engine import AchievementCheck, run_achievement_checks
from coursehub.database import get_session, get_session_factory
from coursehub.redis_client import get_optional_redis

get_db = get_session


def schedule_achievement_checks(background_tasks: BackgroundTasks, checks: Sequence[AchievementCheck]) -> None:
    """Run achievement checks after the response, in their own session."""
    if not checks:
        return
    background_tasks.add_task(
        run_achievement_checks,
        get_session_factory(),
        list(checks),
        get_optional_redis(),
    )
