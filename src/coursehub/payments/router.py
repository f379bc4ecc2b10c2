"""Course purchase and payment endpoints."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.auth.dependencies import get_current_account
from coursehub.database import get_session
from coursehub.db.models import Account
from coursehub.dependencies import schedule_achievement_checks
from coursehub.payments.provider import PaymentProvider, get_payment_provider
from coursehub.payments.schemas import CaptureResponse, PaymentResponse, PurchaseResponse
from coursehub.payments.service import capture_order, list_payments, start_purchase

router = APIRouter(prefix="/api/v1", tags=["Payments"])


@router.post("/courses/{course_id}/purchase", response_model=PurchaseResponse)
async def purchase_course(
    course_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> PurchaseResponse:
    """Free courses are granted at once; paid courses return a provider approval URL."""
    outcome = await start_purchase(db, provider, account, course_id)
    schedule_achievement_checks(background_tasks, outcome.pending_checks)
    return PurchaseResponse(
        status=outcome.status,
        course_id=outcome.course_id,
        order_id=outcome.order_id,
        approval_url=outcome.approval_url,
    )


@router.post("/payments/orders/{order_id}/capture", response_model=CaptureResponse)
async def capture(
    order_id: str,
    background_tasks: BackgroundTasks,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> CaptureResponse:
    """Capture an approved order synchronously."""
    outcome = await capture_order(db, provider, account, order_id)
    schedule_achievement_checks(background_tasks, outcome.pending_checks)
    return CaptureResponse(order_id=outcome.order_id, status=outcome.status, course_id=outcome.course_id)


@router.get("/payments", response_model=list[PaymentResponse])
async def payment_history(
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
) -> list[PaymentResponse]:
    return [
        PaymentResponse(
            id=p.id,
            course_id=p.course_id,
            provider_order_id=p.provider_order_id,
            amount=p.amount,
            currency=p.currency,
            status=p.status,
            created_at=p.created_at,
        )
        for p in await list_payments(db, account.id)
    ]
