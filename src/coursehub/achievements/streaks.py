"""Daily login streak tracking."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import case, select
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.achievements.engine import LOGIN_STREAK_STAT
from coursehub.db.models import AccountStat
from coursehub.db.upsert import insert_for

LONGEST_STREAK_STAT = "longest_login_streak"


def utc_date(dt: datetime) -> date:
    """Calendar date in UTC; naive values are taken to be UTC already."""
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)
    return dt.date()


def next_streak(current: int, last_login: date | None, today: date) -> int:
    """Streak after logging in on ``today``.

    Same day keeps the streak, the following day extends it, anything else restarts at 1.
    """
    if last_login is None or current <= 0:
        return 1
    if last_login == today:
        return current
    if last_login == today - timedelta(days=1):
        return current + 1
    return 1


async def get_stat(db: AsyncSession, account_id: uuid.UUID, stat_type: str) -> int:
    result = await db.execute(
        select(AccountStat.value).where(
            AccountStat.account_id == account_id,
            AccountStat.stat_type == stat_type,
        )
    )
    return int(result.scalar() or 0)


async def record_login(
    db: AsyncSession,
    account_id: uuid.UUID,
    previous_login: datetime | None,
    now: datetime | None = None,
) -> int:
    """Update the login streak counters and return the current streak."""
    now = now or datetime.now(timezone.utc)
    current = await get_stat(db, account_id, LOGIN_STREAK_STAT)
    last = utc_date(previous_login) if previous_login is not None else None
    streak = next_streak(current, last, utc_date(now))

    stmt = insert_for(db, AccountStat).values(
        account_id=account_id, stat_type=LOGIN_STREAK_STAT, value=streak, updated_at=now
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["account_id", "stat_type"],
        set_={"value": stmt.excluded.value, "updated_at": stmt.excluded.updated_at},
    )
    await db.execute(stmt)

    longest = insert_for(db, AccountStat).values(
        account_id=account_id, stat_type=LONGEST_STREAK_STAT, value=streak, updated_at=now
    )
    longest = longest.on_conflict_do_update(
        index_elements=["account_id", "stat_type"],
        set_={
            "value": case(
                (longest.excluded.value > AccountStat.value, longest.excluded.value),
                else_=AccountStat.value,
            ),
            "updated_at": longest.excluded.updated_at,
        },
    )
    await db.execute(longest)
    return streak
