"""Inbound payment-provider webhook endpoint."""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.database import get_session
from coursehub.dependencies import schedule_achievement_checks
from coursehub.email.service import send_pending_emails
from coursehub.payments.provider import PaymentProvider, get_payment_provider
from coursehub.redis_client import get_optional_redis
from coursehub.webhooks.processor import WebhookProcessor

router = APIRouter(prefix="/api/v1/webhooks", tags=["Webhooks"])


@router.post("/payment-provider")
async def payment_provider_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_session),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> dict[str, str]:
    """Verify and apply one provider event. Failures surface as 4xx/5xx, never 200."""
    raw_body = await request.body()
    processor = WebhookProcessor(db, provider, get_optional_redis())
    outcome = await processor.verify_and_dispatch(raw_body, request.headers)
    schedule_achievement_checks(background_tasks, outcome.pending_checks)
    if outcome.pending_emails:
        background_tasks.add_task(send_pending_emails, outcome.pending_emails)
    return {"status": outcome.status, "event_id": outcome.event_id}
