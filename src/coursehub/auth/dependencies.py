"""Session resolution: bearer header or cookie -> Account."""

from __future__ import annotations

import jwt
import structlog
from fastapi import Depends, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.auth.jwt import decode_session
from coursehub.auth.service import get_account_by_id
from coursehub.config import get_settings
from coursehub.database import get_session
from coursehub.db.models import Account
from coursehub.errors import AccessDenied, AccountGone, InvalidToken, Unauthenticated

logger = structlog.get_logger()

_bearer = HTTPBearer(auto_error=False)


def extract_token(authorization: str | None, cookie: str | None) -> str | None:
    """Pick the session token; the Authorization header wins over the cookie."""
    if authorization:
        scheme, _, credentials = authorization.partition(" ")
        if scheme.lower() == "bearer" and credentials.strip():
            return credentials.strip()
    if cookie:
        return cookie
    return None


async def resolve_account(db: AsyncSession, token: str | None) -> Account:
    """
    Turn a session token into a live account.

    Raises:
        Unauthenticated: No token was presented.
        InvalidToken: Bad signature, expired, wrong issuer/type, or malformed subject.
        AccountGone: The subject no longer resolves to an account.
    """
    if not token:
        raise Unauthenticated

    try:
        claims = decode_session(token)
    except jwt.InvalidTokenError as e:
        logger.info("session_token_rejected", reason=str(e))
        raise InvalidToken from e

    account = await get_account_by_id(db, claims.account_id)
    if account is None:
        raise AccountGone
    return account


async def get_current_account(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
    db: AsyncSession = Depends(get_session),
) -> Account:
    """Resolve the caller's account (FastAPI dependency). Raises 401 on failure."""
    header = f"{credentials.scheme} {credentials.credentials}" if credentials else None
    cookie = request.cookies.get(get_settings().session_cookie_name)
    return await resolve_account(db, extract_token(header, cookie))


async def require_admin(account: Account = Depends(get_current_account)) -> Account:
    """Same as get_current_account but additionally requires the admin role."""
    if not account.is_admin:
        raise AccessDenied
    return account
