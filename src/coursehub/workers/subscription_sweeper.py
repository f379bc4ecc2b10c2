"""arq worker for periodic subscription expiry.

Subscriptions whose provider never sends a cancellation or expiry event are
deactivated once their end time passes.
"""

from __future__ import annotations

import logging

from arq import cron
from arq.connections import RedisSettings

from coursehub.config import get_settings
from coursehub.database import close_db, get_session_factory, init_db
from coursehub.subscriptions.service import expire_lapsed_subscriptions

logger = logging.getLogger(__name__)


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize the database on worker startup."""
    settings = get_settings()
    await init_db(settings.database_url)
    ctx["session_factory"] = get_session_factory()
    logger.info("Subscription sweeper started")


async def shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    await close_db()
    logger.info("Subscription sweeper shut down")


async def expire_subscriptions(ctx: dict) -> int:  # type: ignore[type-arg]
    """Periodic task: deactivate subscriptions past their end time."""
    session_factory = ctx["session_factory"]
    async with session_factory() as db:
        try:
            count = await expire_lapsed_subscriptions(db)
        except Exception:
            logger.exception("Failed to expire lapsed subscriptions")
            await db.rollback()
            return 0
    if count > 0:
        logger.info("Expired %d lapsed subscriptions", count)
    return count


def _sweep_minutes(interval: int) -> set[int]:
    interval = max(1, min(interval, 60))
    return set(range(0, 60, interval))


class SubscriptionWorkerSettings:
    """arq worker settings for the subscription sweeper."""

    functions = [expire_subscriptions]
    cron_jobs = [
        cron(expire_subscriptions, minute=_sweep_minutes(get_settings().subscription_sweep_minute_interval)),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().arq_redis_url)
    max_jobs = 4
    job_timeout = 300
