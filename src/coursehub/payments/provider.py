"""Payment provider client (PayPal REST).

Every call obtains its bearer token from the injected ``ProviderTokenCache``
and runs with a bounded ``httpx`` timeout.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import httpx
from fastapi import Request

from coursehub.config import Settings
from coursehub.errors import ProviderAuthError, ProviderRequestError, ProviderUnavailable
from coursehub.payments.token_cache import CachedToken, ProviderTokenCache

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_TTL_SECONDS = 300


@dataclass(frozen=True)
class ProviderOrder:
    order_id: str
    status: str
    approval_url: str | None


@dataclass(frozen=True)
class CaptureResult:
    order_id: str
    status: str
    capture_id: str | None
    custom_id: str | None

    @property
    def completed(self) -> bool:
        return self.status == "COMPLETED"


@dataclass(frozen=True)
class ProviderSubscription:
    subscription_id: str
    status: str
    approval_url: str | None


@dataclass(frozen=True)
class WebhookTransmission:
    """Signature material sent by the provider alongside each webhook."""

    transmission_id: str
    transmission_sig: str
    transmission_time: str
    cert_url: str
    auth_algo: str


class PaymentProvider(ABC):
    """Operations the platform needs from a payment provider."""

    @abstractmethod
    async def create_order(
        self,
        amount: Decimal,
        currency: str,
        custom_id: str,
        description: str,
    ) -> ProviderOrder: ...

    @abstractmethod
    async def capture_order(self, order_id: str) -> CaptureResult: ...

    @abstractmethod
    async def create_subscription(
        self,
        plan_id: str,
        custom_id: str,
        subscriber_email: str | None = None,
    ) -> ProviderSubscription: ...

    @abstractmethod
    async def cancel_subscription(self, subscription_id: str, reason: str) -> None: ...

    @abstractmethod
    async def verify_webhook_signature(
        self,
        transmission: WebhookTransmission,
        event: dict[str, Any],
    ) -> bool: ...

    async def aclose(self) -> None:  # noqa: B027
        """Release network resources."""


def _link(body: dict[str, Any], *rels: str) -> str | None:
    for link in body.get("links") or []:
        if link.get("rel") in rels:
            return link.get("href")
    return None


class PayPalClient(PaymentProvider):
    """PayPal REST client using client-credentials OAuth2."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        base_url: str,
        webhook_id: str,
        *,
        timeout: float = 10.0,
        safety_margin: timedelta = timedelta(seconds=60),
        retry_backoff: float = 0.5,
        return_url: str = "",
        cancel_url: str = "",
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._webhook_id = webhook_id
        self._retry_backoff = retry_backoff
        self._return_url = return_url
        self._cancel_url = cancel_url
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._http = http_client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self.tokens = ProviderTokenCache(self.fetch_access_token, safety_margin, self._clock)

    @classmethod
    def from_settings(cls, settings: Settings) -> PayPalClient:
        return cls(
            client_id=settings.paypal_client_id,
            client_secret=settings.paypal_client_secret,
            base_url=settings.paypal_base_url,
            webhook_id=settings.paypal_webhook_id,
            timeout=settings.paypal_timeout_seconds,
            safety_margin=timedelta(seconds=settings.paypal_token_safety_margin_seconds),
            retry_backoff=settings.paypal_retry_backoff_seconds,
            return_url=settings.paypal_return_url,
            cancel_url=settings.paypal_cancel_url,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    # --- OAuth2 ---

    async def fetch_access_token(self) -> CachedToken:
        """Request a new client-credentials token.

        Raises:
            ProviderAuthError: Endpoint unreachable, non-2xx status, or malformed body.
        """
        requested_at = self._clock()
        try:
            response = await self._http.post(
                "/v1/oauth2/token",
                data={"grant_type": "client_credentials"},
                auth=(self._client_id, self._client_secret),
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            logger.warning("PayPal token endpoint unreachable: %s", e)
            raise ProviderAuthError from e

        if response.status_code != 200:
            logger.warning("PayPal token request failed with status %d", response.status_code)
            raise ProviderAuthError

        try:
            body = response.json()
            access_token = body["access_token"]
            expires_in = int(body.get("expires_in", DEFAULT_TOKEN_TTL_SECONDS))
        except (ValueError, KeyError, TypeError) as e:
            raise ProviderAuthError from e
        if not isinstance(access_token, str) or not access_token:
            raise ProviderAuthError

        return CachedToken(access_token, requested_at + timedelta(seconds=expires_in))

    # --- Request plumbing ---

    async def _request(self, method: str, path: str, json: dict[str, Any] | None = None) -> dict[str, Any]:
        """Authenticated request with one retry on token failure or a rejected token."""
        for attempt in range(2):
            try:
                token = await self.tokens.get_token()
            except ProviderAuthError:
                if attempt == 0:
                    await asyncio.sleep(self._retry_backoff)
                    continue
                raise

            try:
                response = await self._http.request(
                    method,
                    path,
                    json=json,
                    headers={
                        "Authorization": f"Bearer {token}",
                        "Content-Type": "application/json",
                        "Accept": "application/json",
                    },
                )
            except httpx.HTTPError as e:
                logger.warning("PayPal %s %s failed: %s", method, path, e)
                raise ProviderUnavailable from e

            if response.status_code == 401:
                self.tokens.invalidate(token)
                if attempt == 0:
                    continue
                raise ProviderAuthError
            if response.status_code >= 500:
                logger.warning("PayPal %s %s returned %d", method, path, response.status_code)
                raise ProviderUnavailable
            if response.status_code >= 400:
                logger.warning("PayPal %s %s rejected: %d %s", method, path, response.status_code, response.text[:500])
                raise ProviderRequestError

            if not response.content:
                return {}
            try:
                body = response.json()
            except ValueError as e:
                raise ProviderRequestError from e
            if not isinstance(body, dict):
                logger.warning("PayPal %s %s returned a non-object body", method, path)
                raise ProviderRequestError
            return body

        raise ProviderAuthError

    # --- Orders ---

    async def create_order(
        self,
        amount: Decimal,
        currency: str,
        custom_id: str,
        description: str,
    ) -> ProviderOrder:
        body = await self._request(
            "POST",
            "/v2/checkout/orders",
            json={
                "intent": "CAPTURE",
                "purchase_units": [
                    {
                        "custom_id": custom_id,
                        "description": description[:127],
                        "amount": {"currency_code": currency, "value": f"{amount:.2f}"},
                    }
                ],
                "application_context": {
                    "return_url": self._return_url,
                    "cancel_url": self._cancel_url,
                    "user_action": "PAY_NOW",
                },
            },
        )
        if not body.get("id"):
            raise ProviderRequestError("Payment provider returned no order id")
        return ProviderOrder(
            order_id=body["id"],
            status=body.get("status", ""),
            approval_url=_link(body, "approve", "payer-action"),
        )

    async def capture_order(self, order_id: str) -> CaptureResult:
        body = await self._request("POST", f"/v2/checkout/orders/{order_id}/capture", json={})
        capture_id = None
        custom_id = None
        for unit in body.get("purchase_units") or []:
            custom_id = custom_id or unit.get("custom_id")
            for capture in (unit.get("payments") or {}).get("captures") or []:
                capture_id = capture_id or capture.get("id")
                custom_id = custom_id or capture.get("custom_id")
        return CaptureResult(
            order_id=body.get("id", order_id),
            status=body.get("status", ""),
            capture_id=capture_id,
            custom_id=custom_id,
        )

    # --- Subscriptions ---

    async def create_subscription(
        self,
        plan_id: str,
        custom_id: str,
        subscriber_email: str | None = None,
    ) -> ProviderSubscription:
        payload: dict[str, Any] = {
            "plan_id": plan_id,
            "custom_id": custom_id,
            "application_context": {
                "return_url": self._return_url,
                "cancel_url": self._cancel_url,
                "user_action": "SUBSCRIBE_NOW",
            },
        }
        if subscriber_email:
            payload["subscriber"] = {"email_address": subscriber_email}
        body = await self._request("POST", "/v1/billing/subscriptions", json=payload)
        if not body.get("id"):
            raise ProviderRequestError("Payment provider returned no subscription id")
        return ProviderSubscription(
            subscription_id=body["id"],
            status=body.get("status", ""),
            approval_url=_link(body, "approve"),
        )

    async def cancel_subscription(self, subscription_id: str, reason: str) -> None:
        await self._request(
            "POST",
            f"/v1/billing/subscriptions/{subscription_id}/cancel",
            json={"reason": reason[:127]},
        )

    # --- Webhooks ---

    async def verify_webhook_signature(
        self,
        transmission: WebhookTransmission,
        event: dict[str, Any],
    ) -> bool:
        """Ask PayPal to verify a webhook delivery against the configured webhook id."""
        if not self._webhook_id:
            logger.error("Webhook received but no PayPal webhook id is configured")
            return False
        body = await self._request(
            "POST",
            "/v1/notifications/verify-webhook-signature",
            json={
                "auth_algo": transmission.auth_algo,
                "cert_url": transmission.cert_url,
                "transmission_id": transmission.transmission_id,
                "transmission_sig": transmission.transmission_sig,
                "transmission_time": transmission.transmission_time,
                "webhook_id": self._webhook_id,
                "webhook_event": event,
            },
        )
        return body.get("verification_status") == "SUCCESS"


def get_payment_provider(request: Request) -> PaymentProvider:
    """FastAPI dependency: the provider client built at startup."""
    provider: PaymentProvider | None = getattr(request.app.state, "payment_provider", None)
    if provider is None:
        raise ProviderUnavailable
    return provider
