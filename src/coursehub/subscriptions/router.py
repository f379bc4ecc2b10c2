"""Subscription endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.auth.dependencies import get_current_account
from coursehub.database import get_session
from coursehub.db.models import Account
from coursehub.payments.provider import PaymentProvider, get_payment_provider
from coursehub.subscriptions.service import (
    cancel_subscription,
    get_active_subscription,
    list_plans,
    start_subscription,
)

router = APIRouter(prefix="/api/v1/subscriptions", tags=["Subscriptions"])


class PlanResponse(BaseModel):
    id: uuid.UUID
    name: str
    description: str | None = None
    price: Decimal
    duration_months: int
    features: list[Any] = []


class SubscribeRequest(BaseModel):
    plan_id: uuid.UUID


class SubscribeResponse(BaseModel):
    subscription_id: str
    status: str
    approval_url: str | None = None


class SubscriptionResponse(BaseModel):
    id: uuid.UUID
    plan_id: uuid.UUID | None = None
    is_active: bool
    start_time: datetime | None = None
    end_time: datetime | None = None
    last_payment_failed_at: datetime | None = None


@router.get("/plans", response_model=list[PlanResponse])
async def plans(db: AsyncSession = Depends(get_session)) -> list[PlanResponse]:
    """Active subscription plans, cheapest first."""
    return [
        PlanResponse(
            id=plan.id,
            name=plan.name,
            description=plan.description,
            price=plan.price,
            duration_months=plan.duration_months,
            features=plan.features or [],
        )
        for plan in await list_plans(db)
    ]


@router.post("", response_model=SubscribeResponse)
async def subscribe(
    body: SubscribeRequest,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> SubscribeResponse:
    """Start a subscription; it becomes active once the provider confirms it."""
    created = await start_subscription(db, provider, account, body.plan_id)
    return SubscribeResponse(
        subscription_id=created.subscription_id,
        status=created.status,
        approval_url=created.approval_url,
    )


@router.get("/me", response_model=SubscriptionResponse | None)
async def my_subscription(
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
) -> SubscriptionResponse | None:
    sub = await get_active_subscription(db, account.id)
    if sub is None:
        return None
    return SubscriptionResponse(
        id=sub.id,
        plan_id=sub.plan_id,
        is_active=sub.is_active,
        start_time=sub.start_time,
        end_time=sub.end_time,
        last_payment_failed_at=sub.last_payment_failed_at,
    )


@router.post("/{subscription_id}/cancel", response_model=SubscriptionResponse)
async def cancel(
    subscription_id: uuid.UUID,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> SubscriptionResponse:
    sub = await cancel_subscription(db, provider, account, subscription_id)
    return SubscriptionResponse(
        id=sub.id,
        plan_id=sub.plan_id,
        is_active=sub.is_active,
        start_time=sub.start_time,
        end_time=sub.end_time,
        last_payment_failed_at=sub.last_payment_failed_at,
    )
