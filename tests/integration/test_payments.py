"""Course purchase and synchronous capture flows."""

import uuid
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from coursehub.achievements.seed import seed_achievements
from coursehub.db.models import AccountAchievement, Entitlement, Payment
from coursehub.payments.service import parse_purchase_reference, purchase_reference
from tests.conftest import auth_headers, create_account, create_course


async def _entitlements(session_factory, account_id):
    async with session_factory() as s:
        return await s.scalar(select(func.count(Entitlement.id)).where(Entitlement.account_id == account_id))


class TestPurchaseReference:
    @pytest.mark.asyncio
    async def test_round_trip(self, db_session):
        account_id, course_id = uuid.uuid4(), uuid.uuid4()
        assert await parse_purchase_reference(db_session, purchase_reference(account_id, course_id)) == (
            account_id,
            course_id,
        )

    @pytest.mark.asyncio
    async def test_external_product_id(self, db_session):
        course, _ = await create_course(db_session, external_product_id="PY-101")
        account_id = uuid.uuid4()
        assert await parse_purchase_reference(db_session, f"{account_id}:PY-101") == (account_id, course.id)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reference", [None, "", "no-separator", "not-a-uuid:course", f"{uuid.uuid4()}:UNKNOWN"])
    async def test_unresolvable(self, db_session, reference):
        assert await parse_purchase_reference(db_session, reference) is None


class TestPurchaseApi:
    @pytest.mark.asyncio
    async def test_free_course_granted_directly(self, client, db_session, session_factory, learner, fake_provider):
        await seed_achievements(db_session)
        course, _ = await create_course(db_session, price=Decimal("0"))

        response = await client.post(f"/api/v1/courses/{course.id}/purchase", headers=auth_headers(learner))

        assert response.status_code == 200
        assert response.json()["status"] == "granted"
        assert fake_provider.orders == []
        assert await _entitlements(session_factory, learner.id) == 1
        async with session_factory() as s:
            earned = await s.scalar(
                select(func.count(AccountAchievement.id)).where(AccountAchievement.account_id == learner.id)
            )
        assert earned == 1

    @pytest.mark.asyncio
    async def test_paid_course_creates_order(self, client, db_session, session_factory, learner, fake_provider):
        course, _ = await create_course(db_session, price=Decimal("49.00"))

        response = await client.post(f"/api/v1/courses/{course.id}/purchase", headers=auth_headers(learner))

        data = response.json()
        assert data["status"] == "pending"
        assert data["order_id"] == "ORDER-1"
        assert data["approval_url"].startswith("https://paypal.test/")
        assert fake_provider.orders[0]["custom_id"] == f"{learner.id}:{course.id}"
        assert fake_provider.orders[0]["amount"] == Decimal("49.00")
        async with session_factory() as s:
            payment = await s.scalar(select(Payment).where(Payment.provider_order_id == "ORDER-1"))
        assert payment.status == "pending"
        assert await _entitlements(session_factory, learner.id) == 0

    @pytest.mark.asyncio
    async def test_already_purchased(self, client, db_session, learner, fake_provider):
        course, _ = await create_course(db_session, price=Decimal("0"))
        headers = auth_headers(learner)
        await client.post(f"/api/v1/courses/{course.id}/purchase", headers=headers)

        response = await client.post(f"/api/v1/courses/{course.id}/purchase", headers=headers)
        assert response.json()["status"] == "already_purchased"

    @pytest.mark.asyncio
    async def test_unknown_course(self, client, learner):
        response = await client.post(f"/api/v1/courses/{uuid.uuid4()}/purchase", headers=auth_headers(learner))
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_requires_session(self, client, db_session):
        course, _ = await create_course(db_session)
        response = await client.post(f"/api/v1/courses/{course.id}/purchase")
        assert response.status_code == 401


class TestCaptureApi:
    @pytest.mark.asyncio
    async def test_capture_grants_course(
        self, client, db_session, session_factory, learner, fake_provider, mock_email_service
    ):
        course, _ = await create_course(db_session)
        headers = auth_headers(learner)
        await client.post(f"/api/v1/courses/{course.id}/purchase", headers=headers)

        response = await client.post("/api/v1/payments/orders/ORDER-1/capture", headers=headers)

        assert response.status_code == 200
        assert response.json() == {"order_id": "ORDER-1", "status": "completed", "course_id": str(course.id)}
        assert await _entitlements(session_factory, learner.id) == 1
        async with session_factory() as s:
            payment = await s.scalar(select(Payment).where(Payment.provider_order_id == "ORDER-1"))
        assert payment.capture_id == "CAPTURE-ORDER-1"
        mock_email_service.send_template.assert_awaited_once()
        assert mock_email_service.send_template.await_args.kwargs["template_name"] == "purchase_receipt"

        access = await client.get(f"/api/v1/courses/{course.id}/access", headers=headers)
        assert access.json()["granted"] is True

    @pytest.mark.asyncio
    async def test_repeat_capture_short_circuits(self, client, db_session, session_factory, learner, fake_provider):
        course, _ = await create_course(db_session)
        headers = auth_headers(learner)
        await client.post(f"/api/v1/courses/{course.id}/purchase", headers=headers)
        await client.post("/api/v1/payments/orders/ORDER-1/capture", headers=headers)

        response = await client.post("/api/v1/payments/orders/ORDER-1/capture", headers=headers)

        assert response.json()["status"] == "completed"
        assert fake_provider.captures == ["ORDER-1"]
        assert await _entitlements(session_factory, learner.id) == 1

    @pytest.mark.asyncio
    async def test_incomplete_capture_grants_nothing(self, client, db_session, session_factory, learner, fake_provider):
        fake_provider.capture_status = "PENDING"
        course, _ = await create_course(db_session)
        headers = auth_headers(learner)
        await client.post(f"/api/v1/courses/{course.id}/purchase", headers=headers)

        response = await client.post("/api/v1/payments/orders/ORDER-1/capture", headers=headers)

        assert response.json()["status"] == "pending"
        assert await _entitlements(session_factory, learner.id) == 0

    @pytest.mark.asyncio
    async def test_other_accounts_order(self, client, db_session, learner, fake_provider):
        course, _ = await create_course(db_session)
        await client.post(f"/api/v1/courses/{course.id}/purchase", headers=auth_headers(learner))
        intruder = await create_account(db_session)

        response = await client.post("/api/v1/payments/orders/ORDER-1/capture", headers=auth_headers(intruder))

        assert response.status_code == 404
        assert fake_provider.captures == []

    @pytest.mark.asyncio
    async def test_payment_history(self, client, db_session, learner):
        course, _ = await create_course(db_session)
        headers = auth_headers(learner)
        await client.post(f"/api/v1/courses/{course.id}/purchase", headers=headers)

        response = await client.get("/api/v1/payments", headers=headers)

        history = response.json()
        assert len(history) == 1
        assert history[0]["provider_order_id"] == "ORDER-1"
        assert history[0]["status"] == "pending"
