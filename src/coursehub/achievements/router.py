"""Achievement API endpoints."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.achievements.engine import AchievementEngine, list_definitions, list_earned
from coursehub.achievements.schemas import (
    AchievementCheckRequest,
    AchievementCheckResponse,
    AchievementCreateRequest,
    AchievementResponse,
    AchievementUpdateRequest,
    EarnedAchievementResponse,
)
from coursehub.auth.dependencies import get_current_account, require_admin
from coursehub.database import get_session
from coursehub.db.models import Account, AchievementDefinition
from coursehub.errors import Conflict, NotFound
from coursehub.redis_client import get_optional_redis

router = APIRouter(prefix="/api/v1/achievements", tags=["Achievements"])


def _definition_response(d: AchievementDefinition) -> AchievementResponse:
    return AchievementResponse(
        id=d.id,
        name=d.name,
        description=d.description,
        icon=d.icon,
        trigger_type=d.trigger_type,
        trigger_value=d.trigger_value,
        is_active=d.is_active,
    )


@router.get("", response_model=list[AchievementResponse])
async def achievements(db: AsyncSession = Depends(get_session)) -> list[AchievementResponse]:
    """All active achievement definitions."""
    return [_definition_response(d) for d in await list_definitions(db)]


@router.get("/me", response_model=list[EarnedAchievementResponse])
async def my_achievements(
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
) -> list[EarnedAchievementResponse]:
    return [
        EarnedAchievementResponse(
            id=d.id,
            name=d.name,
            description=d.description,
            icon=d.icon,
            earned_at=earned.earned_at,
        )
        for d, earned in await list_earned(db, account.id)
    ]


@router.post("", response_model=AchievementResponse, status_code=201)
async def create_achievement(
    body: AchievementCreateRequest,
    _admin: Account = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> AchievementResponse:
    """Add a definition to the catalogue (admin only)."""
    definition = AchievementDefinition(**body.model_dump())
    db.add(definition)
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise Conflict("Achievement name already exists") from e
    return _definition_response(definition)


@router.patch("/{achievement_id}", response_model=AchievementResponse)
async def update_achievement(
    achievement_id: uuid.UUID,
    body: AchievementUpdateRequest,
    _admin: Account = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> AchievementResponse:
    """Change a definition (admin only). Already earned achievements are kept."""
    definition = await db.get(AchievementDefinition, achievement_id)
    if definition is None:
        raise NotFound("Achievement not found")
    for field, value in body.model_dump(exclude_unset=True).items():
        if value is None and field != "icon":
            continue
        setattr(definition, field, value)
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise Conflict("Achievement name already exists") from e
    return _definition_response(definition)


@router.delete("/{achievement_id}", response_model=AchievementResponse)
async def deactivate_achievement(
    achievement_id: uuid.UUID,
    _admin: Account = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> AchievementResponse:
    """Retire a definition (admin only).

    The row is kept so earned records still resolve; it just stops being
    listed and awarded.
    """
    definition = await db.get(AchievementDefinition, achievement_id)
    if definition is None:
        raise NotFound("Achievement not found")
    definition.is_active = False
    await db.commit()
    return _definition_response(definition)


@router.post("/check", response_model=AchievementCheckResponse)
async def run_check(
    body: AchievementCheckRequest,
    _admin: Account = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> AchievementCheckResponse:
    """Evaluate one trigger for an account right away (admin only)."""
    if await db.get(Account, body.account_id) is None:
        raise NotFound("Account not found")
    engine = AchievementEngine(db, get_optional_redis())
    awarded = await engine.check_and_award(body.account_id, body.action, body.value)
    return AchievementCheckResponse(awarded=[_definition_response(d) for d in awarded])
