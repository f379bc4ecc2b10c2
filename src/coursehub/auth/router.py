"""Authentication router: all /api/v1/auth/* endpoints."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Response
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.achievements.engine import AchievementCheck, TriggerKind
from coursehub.achievements.streaks import record_login
from coursehub.auth.dependencies import get_current_account
from coursehub.auth.jwt import create_access_token, session_lifetime
from coursehub.auth.password import PasswordStrengthError
from coursehub.auth.schemas import AccountResponse, LoginRequest, RegisterRequest, TokenResponse
from coursehub.auth.service import authenticate, mark_login, register_account
from coursehub.config import get_settings
from coursehub.database import get_session
from coursehub.db.models import Account
from coursehub.dependencies import schedule_achievement_checks
from coursehub.email.service import get_email_service

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/auth", tags=["Authentication"])


def _account_response(account: Account) -> AccountResponse:
    return AccountResponse(
        id=account.id,
        email=account.email,
        name=account.name,
        role=account.role,
        subscription_expires_at=account.subscription_expires_at,
        last_login=account.last_login,
        created_at=account.created_at,
    )


def _issue_session(response: Response, account: Account) -> TokenResponse:
    """Create a session token and set it as the session cookie."""
    settings = get_settings()
    token = create_access_token(account.id)
    max_age = int(session_lifetime().total_seconds())
    response.set_cookie(
        settings.session_cookie_name,
        token,
        max_age=max_age,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )
    return TokenResponse(access_token=token, expires_in=max_age, account=_account_response(account))


@router.post("/register", response_model=TokenResponse, status_code=201)
async def register(
    body: RegisterRequest,
    response: Response,
    db: AsyncSession = Depends(get_session),
) -> TokenResponse:
    """Register with email + password."""
    try:
        account = await register_account(db, email=body.email, password=body.password, name=body.name)
    except PasswordStrengthError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e

    mark_login(account)
    await db.commit()

    try:
        await get_email_service().send_template(
            to=account.email,
            template_name="welcome",
            context={"name": account.name},
        )
    except Exception:
        logger.exception("welcome_email_failed", account_id=str(account.id))

    return _issue_session(response, account)


@router.post("/login", response_model=TokenResponse)
async def login(
    body: LoginRequest,
    response: Response,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_session),
) -> TokenResponse:
    """Login with email + password. Also advances the daily login streak."""
    try:
        account = await authenticate(db, body.email, body.password)
    except ValueError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e

    previous_login = mark_login(account)
    streak = await record_login(db, account.id, previous_login, account.last_login)
    await db.commit()
    logger.info("login", account_id=str(account.id), login_streak=streak)

    schedule_achievement_checks(
        background_tasks,
        [AchievementCheck(account.id, TriggerKind.LOGIN_STREAK.value)],
    )
    return _issue_session(response, account)


@router.post("/logout", status_code=204)
async def logout() -> Response:
    """Clear the session cookie."""
    settings = get_settings()
    response = Response(status_code=204)
    response.delete_cookie(settings.session_cookie_name, httponly=True, secure=settings.session_cookie_secure)
    return response


@router.get("/me", response_model=AccountResponse)
async def me(account: Account = Depends(get_current_account)) -> AccountResponse:
    """The account behind the current session."""
    return _account_response(account)
