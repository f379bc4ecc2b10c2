"""
RS256 JWT session tokens.

A session token is issued at login and carried either in the session cookie
or in an ``Authorization: Bearer`` header. Only the public key is needed to
verify one, so verification never touches the database.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import jwt

from coursehub.config import get_settings

SESSION_TOKEN_TYPE = "session"

_private_key: str | None = None
_public_key: str | None = None


@dataclass(frozen=True)
class SessionClaims:
    account_id: uuid.UUID
    issued_at: datetime
    expires_at: datetime


def _load_keys() -> tuple[str, str]:
    """Read the RSA key pair once per process."""
    global _private_key, _public_key  # noqa: PLW0603
    if _private_key is None or _public_key is None:
        settings = get_settings()
        _private_key = Path(settings.jwt_private_key_path).read_text()
        _public_key = Path(settings.jwt_public_key_path).read_text()
    return _private_key, _public_key


def reset_keys() -> None:
    """Forget the loaded keys so the next call re-reads the configured paths."""
    global _private_key, _public_key  # noqa: PLW0603
    _private_key = None
    _public_key = None


def session_lifetime() -> timedelta:
    return timedelta(minutes=get_settings().jwt_access_token_expire_minutes)


def create_access_token(account_id: uuid.UUID, *, expires_in: timedelta | None = None) -> str:
    """Sign a session token whose ``sub`` is the account id."""
    private_key, _ = _load_keys()
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload: dict[str, Any] = {
        "sub": str(account_id),
        "iat": now,
        "exp": now + (expires_in if expires_in is not None else session_lifetime()),
        "iss": settings.jwt_issuer,
        "type": SESSION_TOKEN_TYPE,
    }
    return jwt.encode(payload, private_key, algorithm=settings.jwt_algorithm)


def verify_token(token: str, expected_type: str = SESSION_TOKEN_TYPE) -> dict[str, Any]:
    """
    Check signature, issuer, expiry and token type; return the raw claims.

    Raises:
        jwt.InvalidTokenError: On any failure. Expiry is reported as "Token has expired".
    """
    _, public_key = _load_keys()
    settings = get_settings()
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            public_key,
            algorithms=[settings.jwt_algorithm],
            issuer=settings.jwt_issuer,
            options={"require": ["sub", "exp", "iat", "iss"]},
        )
    except jwt.ExpiredSignatureError:
        msg = "Token has expired"
        raise jwt.InvalidTokenError(msg) from None

    if payload.get("type") != expected_type:
        msg = f"Expected token type '{expected_type}', got '{payload.get('type')}'"
        raise jwt.InvalidTokenError(msg)
    return payload


def decode_session(token: str) -> SessionClaims:
    """Verify a session token and parse its claims.

    Raises:
        jwt.InvalidTokenError: Verification failed or ``sub`` is not an account UUID.
    """
    payload = verify_token(token)
    try:
        account_id = uuid.UUID(str(payload["sub"]))
    except ValueError:
        msg = "Token subject is not an account id"
        raise jwt.InvalidTokenError(msg) from None
    return SessionClaims(
        account_id=account_id,
        issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
        expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
    )
