"""Webhook signature verification, always run before any state is touched."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import structlog

from coursehub.errors import MalformedWebhook, UnverifiedSignature
from coursehub.payments.provider import PaymentProvider, WebhookTransmission

logger = structlog.get_logger()

# Header name -> WebhookTransmission field
TRANSMISSION_HEADERS = {
    "paypal-transmission-id": "transmission_id",
    "paypal-transmission-sig": "transmission_sig",
    "paypal-transmission-time": "transmission_time",
    "paypal-cert-url": "cert_url",
    "paypal-auth-algo": "auth_algo",
}


def extract_transmission(headers: Mapping[str, str]) -> WebhookTransmission:
    """Collect the signature headers.

    Raises:
        MalformedWebhook: If any signature header is missing or empty.
    """
    lowered = {k.lower(): v for k, v in headers.items()}
    values: dict[str, str] = {}
    missing: list[str] = []
    for header, field_name in TRANSMISSION_HEADERS.items():
        value = (lowered.get(header) or "").strip()
        if not value:
            missing.append(header)
        values[field_name] = value
    if missing:
        raise MalformedWebhook(f"Missing webhook headers: {', '.join(sorted(missing))}")
    return WebhookTransmission(**values)


async def verify_signature(
    provider: PaymentProvider,
    transmission: WebhookTransmission,
    event: dict[str, Any],
) -> None:
    """
    Verify a delivery with the provider.

    Raises:
        UnverifiedSignature: The provider did not confirm the signature.
        ProviderAuthError / ProviderUnavailable: The provider could not be asked.
    """
    if not await provider.verify_webhook_signature(transmission, event):
        logger.warning(
            "webhook_signature_rejected",
            transmission_id=transmission.transmission_id,
            event_type=event.get("event_type"),
        )
        raise UnverifiedSignature
