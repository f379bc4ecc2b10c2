"""Webhook ingestion: signature checks, idempotency and event handling."""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select

from coursehub.achievements.seed import seed_achievements
from coursehub.db.models import Account, AccountAchievement, Entitlement, Payment, Subscription, WebhookEvent
from coursehub.email.service import send_pending_emails
from coursehub.errors import ProviderUnavailable
from coursehub.subscriptions.service import activate_subscription
from coursehub.webhooks.processor import WebhookProcessor
from tests.conftest import WEBHOOK_HEADERS, auth_headers, create_course, create_plan

WEBHOOK_URL = "/api/v1/webhooks/payment-provider"


def _event(event_id: str, event_type: str, resource: dict) -> str:
    return json.dumps({"id": event_id, "event_type": event_type, "resource_type": "test", "resource": resource})


def _capture(order_id: str | None = None, custom_id: str | None = None) -> dict:
    resource: dict = {"id": "CAP-1", "status": "COMPLETED"}
    if order_id:
        resource["supplementary_data"] = {"related_ids": {"order_id": order_id}}
    if custom_id:
        resource["custom_id"] = custom_id
    return resource


async def _count(session_factory, column, *where):
    async with session_factory() as s:
        return await s.scalar(select(func.count(column)).where(*where))


async def _active_subscription(db, account_id, provider_id="I-LIVE"):
    now = datetime.now(timezone.utc)
    await activate_subscription(db, account_id, provider_id, None, now, now + timedelta(days=30))
    await db.commit()


class TestCaptureEvents:
    @pytest.mark.asyncio
    async def test_capture_via_order(self, client, db_session, session_factory, learner, fake_provider):
        await seed_achievements(db_session)
        course, _ = await create_course(db_session)
        await client.post(f"/api/v1/courses/{course.id}/purchase", headers=auth_headers(learner))

        response = await client.post(
            WEBHOOK_URL,
            content=_event("WH-1", "PAYMENT.CAPTURE.COMPLETED", _capture(order_id="ORDER-1")),
            headers=WEBHOOK_HEADERS,
        )

        assert response.status_code == 200
        assert response.json() == {"status": "processed", "event_id": "WH-1"}
        transmission, event = fake_provider.verified[0]
        assert transmission.transmission_id == WEBHOOK_HEADERS["PAYPAL-TRANSMISSION-ID"]
        assert event["id"] == "WH-1"
        async with session_factory() as s:
            payment = await s.scalar(select(Payment).where(Payment.provider_order_id == "ORDER-1"))
        assert payment.status == "completed"
        assert payment.capture_id == "CAP-1"
        assert await _count(session_factory, Entitlement.id, Entitlement.account_id == learner.id) == 1
        assert await _count(session_factory, AccountAchievement.id, AccountAchievement.account_id == learner.id) == 1

    @pytest.mark.asyncio
    async def test_capture_via_custom_id(self, client, db_session, session_factory, learner):
        course, _ = await create_course(db_session, external_product_id="PY-101")

        response = await client.post(
            WEBHOOK_URL,
            content=_event("WH-2", "PAYMENT.CAPTURE.COMPLETED", _capture(custom_id=f"{learner.id}:PY-101")),
            headers=WEBHOOK_HEADERS,
        )

        assert response.status_code == 200
        async with session_factory() as s:
            entitlement = await s.scalar(select(Entitlement).where(Entitlement.account_id == learner.id))
        assert entitlement.course_id == course.id

    @pytest.mark.asyncio
    async def test_unmatched_capture_is_acknowledged(self, client, session_factory):
        response = await client.post(
            WEBHOOK_URL,
            content=_event("WH-3", "PAYMENT.CAPTURE.COMPLETED", _capture(order_id="ORDER-UNKNOWN")),
            headers=WEBHOOK_HEADERS,
        )

        assert response.status_code == 200
        assert await _count(session_factory, Entitlement.id) == 0
        assert await _count(session_factory, WebhookEvent.id) == 1

    @pytest.mark.asyncio
    async def test_duplicate_delivery(self, client, db_session, session_factory, learner):
        await create_course(db_session, external_product_id="PY-101")
        body = _event("WH-DUP", "PAYMENT.CAPTURE.COMPLETED", _capture(custom_id=f"{learner.id}:PY-101"))

        first = await client.post(WEBHOOK_URL, content=body, headers=WEBHOOK_HEADERS)
        second = await client.post(WEBHOOK_URL, content=body, headers=WEBHOOK_HEADERS)

        assert first.json()["status"] == "processed"
        assert second.status_code == 200
        assert second.json()["status"] == "duplicate"
        assert await _count(session_factory, WebhookEvent.id) == 1
        assert await _count(session_factory, Entitlement.id) == 1

    @pytest.mark.asyncio
    async def test_capture_denied_fails_payment(self, client, db_session, session_factory, learner):
        course, _ = await create_course(db_session)
        await client.post(f"/api/v1/courses/{course.id}/purchase", headers=auth_headers(learner))

        await client.post(
            WEBHOOK_URL,
            content=_event("WH-4", "PAYMENT.CAPTURE.DENIED", _capture(order_id="ORDER-1")),
            headers=WEBHOOK_HEADERS,
        )

        async with session_factory() as s:
            payment = await s.scalar(select(Payment).where(Payment.provider_order_id == "ORDER-1"))
        assert payment.status == "failed"


class TestRejectedDeliveries:
    @pytest.mark.asyncio
    async def test_unverified_signature(self, client, db_session, session_factory, learner, fake_provider):
        await _active_subscription(db_session, learner.id)
        fake_provider.verify_result = False

        response = await client.post(
            WEBHOOK_URL,
            content=_event("WH-FORGED", "BILLING.SUBSCRIPTION.CANCELLED", {"id": "I-LIVE"}),
            headers=WEBHOOK_HEADERS,
        )

        assert response.status_code == 400
        assert await _count(session_factory, WebhookEvent.id) == 0
        async with session_factory() as s:
            sub = await s.scalar(select(Subscription).where(Subscription.provider_subscription_id == "I-LIVE"))
        assert sub.is_active is True

    @pytest.mark.asyncio
    async def test_missing_headers(self, client, fake_provider):
        headers = {k: v for k, v in WEBHOOK_HEADERS.items() if k != "PAYPAL-TRANSMISSION-SIG"}

        response = await client.post(
            WEBHOOK_URL,
            content=_event("WH-5", "PAYMENT.CAPTURE.COMPLETED", _capture(order_id="ORDER-1")),
            headers=headers,
        )

        assert response.status_code == 400
        assert fake_provider.verified == []

    @pytest.mark.asyncio
    async def test_malformed_body(self, client, fake_provider):
        response = await client.post(WEBHOOK_URL, content=b"{not json", headers=WEBHOOK_HEADERS)
        assert response.status_code == 400
        assert fake_provider.verified == []

    @pytest.mark.asyncio
    async def test_unknown_event_type(self, client, session_factory):
        response = await client.post(
            WEBHOOK_URL,
            content=_event("WH-6", "CUSTOMER.DISPUTE.CREATED", {"id": "PP-D-1"}),
            headers=WEBHOOK_HEADERS,
        )

        assert response.status_code == 400
        assert await _count(session_factory, WebhookEvent.id) == 0

    @pytest.mark.asyncio
    async def test_provider_unavailable(self, client, session_factory, fake_provider):
        fake_provider.verify_webhook_signature = AsyncMock(side_effect=ProviderUnavailable("provider down"))

        response = await client.post(
            WEBHOOK_URL,
            content=_event("WH-7", "PAYMENT.CAPTURE.COMPLETED", _capture(order_id="ORDER-1")),
            headers=WEBHOOK_HEADERS,
        )

        assert response.status_code == 503
        assert await _count(session_factory, WebhookEvent.id) == 0


class TestSubscriptionEvents:
    @pytest.mark.asyncio
    async def test_activation(self, client, db_session, session_factory, learner):
        plan = await create_plan(db_session)
        resource = {
            "id": "I-NEW",
            "custom_id": str(learner.id),
            "plan_id": "P-MONTHLY",
            "start_time": "2026-10-01T00:00:00Z",
            "billing_info": {"next_billing_time": "2099-11-01T00:00:00Z"},
        }

        response = await client.post(
            WEBHOOK_URL, content=_event("WH-8", "BILLING.SUBSCRIPTION.ACTIVATED", resource), headers=WEBHOOK_HEADERS
        )

        assert response.status_code == 200
        async with session_factory() as s:
            sub = await s.scalar(select(Subscription).where(Subscription.provider_subscription_id == "I-NEW"))
        assert sub.is_active is True
        assert sub.plan_id == plan.id
        assert sub.end_time.replace(tzinfo=None) == datetime(2099, 11, 1)

        course, _ = await create_course(db_session)
        access = await client.get(f"/api/v1/courses/{course.id}/access", headers=auth_headers(learner))
        assert access.json()["granted"] is True

    @pytest.mark.asyncio
    async def test_second_activation_replaces_first(self, client, db_session, session_factory, learner):
        await _active_subscription(db_session, learner.id, "I-OLD")
        resource = {"id": "I-NEW", "custom_id": str(learner.id)}

        await client.post(
            WEBHOOK_URL, content=_event("WH-9", "BILLING.SUBSCRIPTION.ACTIVATED", resource), headers=WEBHOOK_HEADERS
        )

        assert await _count(
            session_factory, Subscription.id, Subscription.account_id == learner.id, Subscription.is_active.is_(True)
        ) == 1
        async with session_factory() as s:
            old = await s.scalar(select(Subscription).where(Subscription.provider_subscription_id == "I-OLD"))
        assert old.is_active is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "event_type",
        ["BILLING.SUBSCRIPTION.CANCELLED", "BILLING.SUBSCRIPTION.EXPIRED", "BILLING.SUBSCRIPTION.SUSPENDED"],
    )
    async def test_deactivation(self, client, db_session, session_factory, learner, event_type):
        await _active_subscription(db_session, learner.id)

        response = await client.post(
            WEBHOOK_URL, content=_event("WH-10", event_type, {"id": "I-LIVE"}), headers=WEBHOOK_HEADERS
        )

        assert response.status_code == 200
        async with session_factory() as s:
            sub = await s.scalar(select(Subscription).where(Subscription.provider_subscription_id == "I-LIVE"))
        assert sub.is_active is False
        assert sub.end_time is not None

    @pytest.mark.asyncio
    async def test_payment_failed(self, client, db_session, session_factory, learner, mock_email_service):
        await _active_subscription(db_session, learner.id)

        response = await client.post(
            WEBHOOK_URL,
            content=_event("WH-11", "BILLING.SUBSCRIPTION.PAYMENT.FAILED", {"id": "I-LIVE"}),
            headers=WEBHOOK_HEADERS,
        )

        assert response.status_code == 200
        async with session_factory() as s:
            sub = await s.scalar(select(Subscription).where(Subscription.provider_subscription_id == "I-LIVE"))
        assert sub.last_payment_failed_at is not None
        assert sub.is_active is True
        mock_email_service.send_template.assert_awaited_once()
        assert mock_email_service.send_template.await_args.kwargs["template_name"] == "subscription_payment_failed"

    @pytest.mark.asyncio
    async def test_cancelling_superseded_subscription_keeps_newer_expiry(
        self, client, db_session, session_factory, learner
    ):
        now = datetime.now(timezone.utc)
        await activate_subscription(db_session, learner.id, "I-OLD", None, now, now + timedelta(days=5))
        await db_session.commit()
        await activate_subscription(db_session, learner.id, "I-NEW", None, now, now + timedelta(days=30))
        await db_session.commit()
        async with session_factory() as s:
            old_end = (
                await s.scalar(select(Subscription).where(Subscription.provider_subscription_id == "I-OLD"))
            ).end_time

        response = await client.post(
            WEBHOOK_URL,
            content=_event("WH-12", "BILLING.SUBSCRIPTION.CANCELLED", {"id": "I-OLD"}),
            headers=WEBHOOK_HEADERS,
        )

        assert response.status_code == 200
        async with session_factory() as s:
            rows = await s.execute(select(Subscription).where(Subscription.account_id == learner.id))
            subs = {sub.provider_subscription_id: sub for sub in rows.scalars()}
            account = await s.get(Account, learner.id)
        assert subs["I-NEW"].is_active is True
        assert subs["I-OLD"].end_time == old_end
        expires = account.subscription_expires_at.replace(tzinfo=None)
        assert expires > (now + timedelta(days=29)).replace(tzinfo=None)

        me = await client.get("/api/v1/auth/me", headers=auth_headers(learner))
        assert me.json()["subscription_expires_at"] is not None

    @pytest.mark.asyncio
    async def test_cancelling_last_active_subscription_expires_account(
        self, client, db_session, session_factory, learner
    ):
        await _active_subscription(db_session, learner.id)

        await client.post(
            WEBHOOK_URL,
            content=_event("WH-13", "BILLING.SUBSCRIPTION.CANCELLED", {"id": "I-LIVE"}),
            headers=WEBHOOK_HEADERS,
        )

        async with session_factory() as s:
            account = await s.get(Account, learner.id)
        assert account.subscription_expires_at.replace(tzinfo=None) <= datetime.now(timezone.utc).replace(tzinfo=None)


class TestDeferredEmail:
    @pytest.mark.asyncio
    async def test_email_waits_for_commit(self, db_session, learner, fake_provider, mock_email_service):
        await _active_subscription(db_session, learner.id)
        processor = WebhookProcessor(db_session, fake_provider)
        body = _event("WH-20", "BILLING.SUBSCRIPTION.PAYMENT.FAILED", {"id": "I-LIVE"}).encode()

        outcome = await processor.verify_and_dispatch(body, WEBHOOK_HEADERS)

        mock_email_service.send_template.assert_not_awaited()
        assert [e.template_name for e in outcome.pending_emails] == ["subscription_payment_failed"]
        assert outcome.pending_emails[0].to == learner.email

        await send_pending_emails(outcome.pending_emails)
        mock_email_service.send_template.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_commit_sends_nothing(
        self, db_session, learner, fake_provider, mock_email_service, monkeypatch
    ):
        await _active_subscription(db_session, learner.id)
        monkeypatch.setattr(db_session, "commit", AsyncMock(side_effect=RuntimeError("commit failed")))
        processor = WebhookProcessor(db_session, fake_provider)
        body = _event("WH-21", "BILLING.SUBSCRIPTION.PAYMENT.FAILED", {"id": "I-LIVE"}).encode()

        with pytest.raises(RuntimeError, match="commit failed"):
            await processor.verify_and_dispatch(body, WEBHOOK_HEADERS)

        mock_email_service.send_template.assert_not_awaited()
