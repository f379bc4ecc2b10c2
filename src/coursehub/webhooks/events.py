"""Webhook event types and envelope parsing."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

from coursehub.errors import MalformedWebhook, UnsupportedEventType


class WebhookEventType(str, Enum):
    """Every provider event the platform acts on. Anything else is rejected."""

    PAYMENT_CAPTURE_COMPLETED = "PAYMENT.CAPTURE.COMPLETED"
    PAYMENT_CAPTURE_DENIED = "PAYMENT.CAPTURE.DENIED"
    SUBSCRIPTION_ACTIVATED = "BILLING.SUBSCRIPTION.ACTIVATED"
    SUBSCRIPTION_CANCELLED = "BILLING.SUBSCRIPTION.CANCELLED"
    SUBSCRIPTION_EXPIRED = "BILLING.SUBSCRIPTION.EXPIRED"
    SUBSCRIPTION_SUSPENDED = "BILLING.SUBSCRIPTION.SUSPENDED"
    SUBSCRIPTION_PAYMENT_FAILED = "BILLING.SUBSCRIPTION.PAYMENT.FAILED"


@dataclass(frozen=True)
class WebhookEnvelope:
    """A parsed (not yet verified) webhook body."""

    event_id: str
    event_type: str
    resource: dict[str, Any]
    raw: dict[str, Any]

    @property
    def resource_id(self) -> str | None:
        value = self.resource.get("id")
        return str(value) if value is not None else None


def parse_envelope(raw_body: bytes) -> WebhookEnvelope:
    """Decode the JSON body.

    Raises:
        MalformedWebhook: Not a JSON object carrying ``id`` and ``event_type``.
    """
    try:
        body = json.loads(raw_body)
    except (ValueError, UnicodeDecodeError) as e:
        raise MalformedWebhook("Webhook body is not valid JSON") from e
    if not isinstance(body, dict):
        raise MalformedWebhook("Webhook body must be a JSON object")

    event_id = body.get("id")
    event_type = body.get("event_type")
    if not isinstance(event_id, str) or not event_id or not isinstance(event_type, str) or not event_type:
        raise MalformedWebhook("Webhook body is missing id or event_type")

    resource = body.get("resource")
    return WebhookEnvelope(
        event_id=event_id,
        event_type=event_type,
        resource=resource if isinstance(resource, dict) else {},
        raw=body,
    )


def resolve_event_type(name: str) -> WebhookEventType:
    """Map a provider event name onto the closed set.

    Raises:
        UnsupportedEventType: For any name outside the set.
    """
    try:
        return WebhookEventType(name)
    except ValueError as e:
        raise UnsupportedEventType(f"Unsupported webhook event type: {name}") from e
