"""Webhook event handlers, one per ``WebhookEventType``.

Handlers run inside the ingestion transaction and never commit. They return
the achievement checks to run once the transaction has committed.
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.achievements.engine import AchievementCheck, TriggerKind
from coursehub.db.models import Account
from coursehub.email.service import PendingEmail
from coursehub.entitlements.service import grant_entitlement
from coursehub.payments.service import (
    complete_payment,
    fail_payment,
    get_payment_by_order,
    parse_purchase_reference,
)
from coursehub.subscriptions.service import (
    activate_subscription,
    deactivate_subscription,
    get_by_provider_id,
    get_plan_by_provider_id,
    record_payment_failure,
)
from coursehub.webhooks.events import WebhookEnvelope, WebhookEventType

logger = structlog.get_logger().bind(component="webhook_handlers")


@dataclass
class HandlerContext:
    db: AsyncSession
    redis: object | None = None
    # Emails to send once the ingestion transaction has committed
    pending_emails: list[PendingEmail] = field(default_factory=list)


WebhookHandler = Callable[[HandlerContext, WebhookEnvelope], Awaitable[list[AchievementCheck]]]


class EventRegistry:
    """Maps each event type to exactly one handler."""

    def __init__(self) -> None:
        self._handlers: dict[WebhookEventType, WebhookHandler] = {}

    def register(self, event_type: WebhookEventType) -> Callable[[WebhookHandler], WebhookHandler]:
        """Decorator to register the handler for an event type."""

        def decorator(handler: WebhookHandler) -> WebhookHandler:
            if event_type in self._handlers:
                msg = f"Handler already registered for {event_type.value}"
                raise ValueError(msg)
            self._handlers[event_type] = handler
            return handler

        return decorator

    def handler_for(self, event_type: WebhookEventType) -> WebhookHandler:
        return self._handlers[event_type]

    @property
    def supported_events(self) -> list[WebhookEventType]:
        return list(self._handlers)


registry = EventRegistry()


def _parse_time(value: Any) -> datetime | None:  # noqa: ANN401
    """Parse an RFC 3339 timestamp from the provider."""
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _related_order_id(resource: dict[str, Any]) -> str | None:
    related = (resource.get("supplementary_data") or {}).get("related_ids") or {}
    order_id = related.get("order_id")
    return str(order_id) if order_id else None


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------


@registry.register(WebhookEventType.PAYMENT_CAPTURE_COMPLETED)
async def handle_capture_completed(ctx: HandlerContext, event: WebhookEnvelope) -> list[AchievementCheck]:
    """Mark the payment completed and grant the course."""
    resource = event.resource
    order_id = _related_order_id(resource)
    payment = await get_payment_by_order(ctx.db, order_id) if order_id else None

    if payment is not None:
        created = await complete_payment(ctx.db, payment, event.resource_id)
        account_id = payment.account_id
    else:
        reference = await parse_purchase_reference(ctx.db, resource.get("custom_id"))
        if reference is None:
            logger.warning("capture_unmatched", event_id=event.event_id, order_id=order_id)
            return []
        account_id, course_id = reference
        if await ctx.db.get(Account, account_id) is None:
            logger.warning("capture_unknown_account", event_id=event.event_id, account_id=str(account_id))
            return []
        created = await grant_entitlement(ctx.db, account_id, course_id)

    if not created:
        logger.info("capture_already_granted", event_id=event.event_id)
        return []
    return [AchievementCheck(account_id, TriggerKind.ENROLLMENT.value)]


@registry.register(WebhookEventType.PAYMENT_CAPTURE_DENIED)
async def handle_capture_denied(ctx: HandlerContext, event: WebhookEnvelope) -> list[AchievementCheck]:
    order_id = _related_order_id(event.resource)
    payment = await get_payment_by_order(ctx.db, order_id) if order_id else None
    if payment is None:
        logger.warning("capture_denied_unmatched", event_id=event.event_id, order_id=order_id)
        return []
    await fail_payment(ctx.db, payment)
    return []


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------


async def _subscription_account(ctx: HandlerContext, resource: dict[str, Any]) -> uuid.UUID | None:
    """Account for a subscription resource: custom_id first, then the stored row."""
    custom_id = resource.get("custom_id")
    if custom_id:
        try:
            account_id = uuid.UUID(str(custom_id))
        except ValueError:
            account_id = None
        if account_id is not None and await ctx.db.get(Account, account_id) is not None:
            return account_id
    provider_id = resource.get("id")
    if provider_id:
        existing = await get_by_provider_id(ctx.db, str(provider_id))
        if existing is not None:
            return existing.account_id
    return None


@registry.register(WebhookEventType.SUBSCRIPTION_ACTIVATED)
async def handle_subscription_activated(ctx: HandlerContext, event: WebhookEnvelope) -> list[AchievementCheck]:
    resource = event.resource
    provider_id = event.resource_id
    account_id = await _subscription_account(ctx, resource)
    if provider_id is None or account_id is None:
        logger.warning("subscription_activation_unmatched", event_id=event.event_id)
        return []

    plan = await get_plan_by_provider_id(ctx.db, resource.get("plan_id"))
    billing = resource.get("billing_info") or {}
    await activate_subscription(
        ctx.db,
        account_id=account_id,
        provider_subscription_id=provider_id,
        plan_id=plan.id if plan else None,
        start_time=_parse_time(resource.get("start_time")),
        end_time=_parse_time(billing.get("next_billing_time")),
    )
    return []


async def _deactivate(ctx: HandlerContext, event: WebhookEnvelope) -> list[AchievementCheck]:
    if event.resource_id is not None:
        await deactivate_subscription(ctx.db, event.resource_id)
    return []


@registry.register(WebhookEventType.SUBSCRIPTION_CANCELLED)
async def handle_subscription_cancelled(ctx: HandlerContext, event: WebhookEnvelope) -> list[AchievementCheck]:
    return await _deactivate(ctx, event)


@registry.register(WebhookEventType.SUBSCRIPTION_EXPIRED)
async def handle_subscription_expired(ctx: HandlerContext, event: WebhookEnvelope) -> list[AchievementCheck]:
    return await _deactivate(ctx, event)


@registry.register(WebhookEventType.SUBSCRIPTION_SUSPENDED)
async def handle_subscription_suspended(ctx: HandlerContext, event: WebhookEnvelope) -> list[AchievementCheck]:
    return await _deactivate(ctx, event)


@registry.register(WebhookEventType.SUBSCRIPTION_PAYMENT_FAILED)
async def handle_subscription_payment_failed(ctx: HandlerContext, event: WebhookEnvelope) -> list[AchievementCheck]:
    """Record the failure and tell the account holder."""
    if event.resource_id is None:
        return []
    subscription = await record_payment_failure(ctx.db, event.resource_id)
    if subscription is None:
        return []

    account = await ctx.db.get(Account, subscription.account_id)
    if account is not None:
        ctx.pending_emails.append(
            PendingEmail(
                to=account.email,
                template_name="subscription_payment_failed",
                context={"name": account.name},
            )
        )
    return []
