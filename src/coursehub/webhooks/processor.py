"""Webhook ingestion: verify, deduplicate, dispatch, commit."""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.achievements.engine import AchievementCheck
from coursehub.db.models import WebhookEvent
from coursehub.db.upsert import insert_for
from coursehub.email.service import PendingEmail
from coursehub.payments.provider import PaymentProvider
from coursehub.webhooks.events import WebhookEventType, parse_envelope, resolve_event_type
from coursehub.webhooks.handlers import EventRegistry, HandlerContext, registry
from coursehub.webhooks.verifier import extract_transmission, verify_signature

logger = structlog.get_logger()

STATUS_PROCESSED = "processed"
STATUS_DUPLICATE = "duplicate"


@dataclass
class WebhookOutcome:
    status: str
    event_id: str
    event_type: WebhookEventType
    pending_checks: list[AchievementCheck] = field(default_factory=list)
    pending_emails: list[PendingEmail] = field(default_factory=list)


class WebhookProcessor:
    """Turns a raw provider delivery into committed state changes."""

    def __init__(
        self,
        db: AsyncSession,
        provider: PaymentProvider,
        redis: object | None = None,
        handlers: EventRegistry = registry,
    ) -> None:
        self.db = db
        self.provider = provider
        self.redis = redis
        self.handlers = handlers

    async def _claim(self, event_id: str, event_type: WebhookEventType, resource_id: str | None) -> bool:
        """Record the delivery; False if this event id was already applied."""
        stmt = (
            insert_for(self.db, WebhookEvent)
            .values(
                id=uuid.uuid4(),
                provider_event_id=event_id,
                event_type=event_type.value,
                resource_id=resource_id,
            )
            .on_conflict_do_nothing(index_elements=["provider_event_id"])
            .returning(WebhookEvent.id)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def verify_and_dispatch(self, raw_body: bytes, headers: Mapping[str, str]) -> WebhookOutcome:
        """
        Process one delivery.

        Raises:
            MalformedWebhook: Missing signature headers or unparseable body.
            UnverifiedSignature: The provider did not confirm the signature.
            UnsupportedEventType: Verified, but not an event the platform handles.
            ProviderAuthError / ProviderUnavailable: Verification could not be performed.
        """
        transmission = extract_transmission(headers)
        envelope = parse_envelope(raw_body)
        log = logger.bind(event_id=envelope.event_id, event_type=envelope.event_type)

        await verify_signature(self.provider, transmission, envelope.raw)
        event_type = resolve_event_type(envelope.event_type)

        try:
            if not await self._claim(envelope.event_id, event_type, envelope.resource_id):
                await self.db.rollback()
                log.info("webhook_duplicate")
                return WebhookOutcome(status=STATUS_DUPLICATE, event_id=envelope.event_id, event_type=event_type)

            handler = self.handlers.handler_for(event_type)
            ctx = HandlerContext(self.db, self.redis)
            checks = await handler(ctx, envelope)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        log.info("webhook_processed", pending_checks=len(checks))
        return WebhookOutcome(
            status=STATUS_PROCESSED,
            event_id=envelope.event_id,
            event_type=event_type,
            pending_checks=checks,
            pending_emails=ctx.pending_emails,
        )
