"""Account lookup, registration and login."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.auth.password import hash_password, validate_password_strength, verify_and_upgrade
from coursehub.db.models import ROLE_STANDARD, Account

logger = structlog.get_logger()


async def get_account_by_id(db: AsyncSession, account_id: uuid.UUID) -> Account | None:
    """Fetch an account by primary key."""
    return await db.get(Account, account_id)


async def get_account_by_email(db: AsyncSession, email: str) -> Account | None:
    """Fetch an account by (normalized) email."""
    result = await db.execute(select(Account).where(Account.email == email.lower().strip()))
    return result.scalar_one_or_none()


async def register_account(
    db: AsyncSession,
    email: str,
    password: str,
    name: str,
    role: str = ROLE_STANDARD,
) -> Account:
    """
    Register a new account with email + password.

    Raises:
        PasswordStrengthError: If the password is weak.
        ValueError: If the email already exists.
    """
    validate_password_strength(password)

    if await get_account_by_email(db, email) is not None:
        msg = "Email already registered"
        raise ValueError(msg)

    account = Account(
        email=email.lower().strip(),
        name=name.strip(),
        password_hash=hash_password(password),
        role=role,
    )
    db.add(account)
    await db.flush()
    logger.info("account_created", account_id=str(account.id))
    return account


async def authenticate(db: AsyncSession, email: str, password: str) -> Account:
    """
    Check credentials and return the account.

    Raises:
        ValueError: If credentials are invalid.
    """
    account = await get_account_by_email(db, email)
    valid, upgraded = verify_and_upgrade(password, account.password_hash if account else None)
    if account is None or not valid:
        msg = "Invalid email or password"
        raise ValueError(msg)

    if upgraded is not None:
        account.password_hash = upgraded
        logger.info("password_rehashed", account_id=str(account.id))

    return account


def mark_login(account: Account, now: datetime | None = None) -> datetime | None:
    """Stamp ``last_login`` and return the previous value."""
    previous = account.last_login
    account.last_login = now or datetime.now(timezone.utc)
    return previous
