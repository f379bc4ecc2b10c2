"""Entitlement resolution: rule precedence, grants and lesson gating."""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from coursehub.db.models import ROLE_ADMIN, Entitlement, Subscription
from coursehub.entitlements.service import (
    AccessDecision,
    grant_entitlement,
    has_access,
    require_lesson_access,
)
from coursehub.errors import AccessDenied, NotFound
from tests.conftest import auth_headers, create_account, create_course

NOW = datetime.now(timezone.utc)


async def _subscribe(db, account, *, active=True, end_time=None, provider_id="I-SUB1"):
    db.add(
        Subscription(
            account_id=account.id,
            provider_subscription_id=provider_id,
            is_active=active,
            start_time=NOW - timedelta(days=3),
            end_time=end_time,
        )
    )
    await db.commit()


class TestPrecedence:
    @pytest.mark.asyncio
    async def test_no_rule_denies(self, db_session):
        account = await create_account(db_session)
        course, _ = await create_course(db_session)
        assert await has_access(db_session, account, course.id) is AccessDecision.DENIED

    @pytest.mark.asyncio
    async def test_admin_granted(self, db_session):
        admin = await create_account(db_session, role=ROLE_ADMIN)
        course, _ = await create_course(db_session)
        assert await has_access(db_session, admin, course.id) is AccessDecision.GRANTED

    @pytest.mark.asyncio
    async def test_active_subscription_granted(self, db_session):
        account = await create_account(db_session)
        course, _ = await create_course(db_session)
        await _subscribe(db_session, account, end_time=NOW + timedelta(days=10))
        assert await has_access(db_session, account, course.id) is AccessDecision.GRANTED

    @pytest.mark.asyncio
    async def test_open_ended_subscription_granted(self, db_session):
        account = await create_account(db_session)
        course, _ = await create_course(db_session)
        await _subscribe(db_session, account, end_time=None)
        assert await has_access(db_session, account, course.id) is AccessDecision.GRANTED

    @pytest.mark.asyncio
    async def test_lapsed_subscription_denied(self, db_session):
        """Active flag alone is not enough once the end time has passed."""
        account = await create_account(db_session)
        course, _ = await create_course(db_session)
        await _subscribe(db_session, account, end_time=NOW - timedelta(minutes=1))
        assert await has_access(db_session, account, course.id) is AccessDecision.DENIED

    @pytest.mark.asyncio
    async def test_inactive_subscription_denied(self, db_session):
        account = await create_account(db_session)
        course, _ = await create_course(db_session)
        await _subscribe(db_session, account, active=False, end_time=NOW + timedelta(days=10))
        assert await has_access(db_session, account, course.id) is AccessDecision.DENIED

    @pytest.mark.asyncio
    async def test_purchase_granted_for_that_course_only(self, db_session):
        account = await create_account(db_session)
        bought, _ = await create_course(db_session, title="Bought")
        other, _ = await create_course(db_session, title="Other")
        await grant_entitlement(db_session, account.id, bought.id)
        await db_session.commit()

        assert await has_access(db_session, account, bought.id) is AccessDecision.GRANTED
        assert await has_access(db_session, account, other.id) is AccessDecision.DENIED

    @pytest.mark.asyncio
    async def test_evaluated_at_given_time(self, db_session):
        account = await create_account(db_session)
        course, _ = await create_course(db_session)
        await _subscribe(db_session, account, end_time=NOW + timedelta(days=1))

        later = NOW + timedelta(days=2)
        assert await has_access(db_session, account, course.id, now=later) is AccessDecision.DENIED


class TestGrant:
    @pytest.mark.asyncio
    async def test_grant_is_idempotent(self, db_session):
        account = await create_account(db_session)
        course, _ = await create_course(db_session)

        assert await grant_entitlement(db_session, account.id, course.id) is True
        assert await grant_entitlement(db_session, account.id, course.id) is False
        await db_session.commit()

        count = await db_session.scalar(
            select(func.count(Entitlement.id)).where(
                Entitlement.account_id == account.id, Entitlement.course_id == course.id
            )
        )
        assert count == 1


class TestLessonGating:
    @pytest.mark.asyncio
    async def test_preview_lesson_open(self, db_session):
        account = await create_account(db_session)
        course, lessons = await create_course(db_session, preview_first=True)
        lesson, course_id = await require_lesson_access(db_session, account, lessons[0].id)
        assert lesson.id == lessons[0].id
        assert course_id == course.id

    @pytest.mark.asyncio
    async def test_paid_lesson_denied(self, db_session):
        account = await create_account(db_session)
        _, lessons = await create_course(db_session, preview_first=True)
        with pytest.raises(AccessDenied):
            await require_lesson_access(db_session, account, lessons[1].id)

    @pytest.mark.asyncio
    async def test_unknown_lesson(self, db_session):
        account = await create_account(db_session)
        with pytest.raises(NotFound):
            await require_lesson_access(db_session, account, uuid.uuid4())


class TestEntitlementApi:
    @pytest.mark.asyncio
    async def test_access_endpoint(self, client, db_session, learner):
        course, _ = await create_course(db_session)
        response = await client.get(f"/api/v1/courses/{course.id}/access", headers=auth_headers(learner))
        assert response.status_code == 200
        assert response.json() == {"course_id": str(course.id), "granted": False}

    @pytest.mark.asyncio
    async def test_outline_marks_locked_lessons(self, client, db_session, learner):
        course, lessons = await create_course(db_session, lessons=3, preview_first=True)
        response = await client.get(f"/api/v1/courses/{course.id}/lessons", headers=auth_headers(learner))
        assert response.status_code == 200
        data = response.json()
        assert data["granted"] is False
        flags = [lesson["locked"] for lesson in data["modules"][0]["lessons"]]
        assert flags == [False, True, True]

    @pytest.mark.asyncio
    async def test_lesson_content_gated(self, client, db_session, learner):
        _, lessons = await create_course(db_session, preview_first=True)
        headers = auth_headers(learner)

        preview = await client.get(f"/api/v1/lessons/{lessons[0].id}", headers=headers)
        assert preview.status_code == 200
        assert preview.json()["content"] == "Content of lesson 1"

        locked = await client.get(f"/api/v1/lessons/{lessons[1].id}", headers=headers)
        assert locked.status_code == 403
        assert locked.json() == {"detail": "Access denied"}

    @pytest.mark.asyncio
    async def test_my_courses(self, client, db_session, learner):
        course, _ = await create_course(db_session, price=Decimal("0"))
        await grant_entitlement(db_session, learner.id, course.id)
        await db_session.commit()

        response = await client.get("/api/v1/me/courses", headers=auth_headers(learner))
        assert response.json() == {"course_ids": [str(course.id)]}

    @pytest.mark.asyncio
    async def test_unknown_course(self, client, learner):
        response = await client.get(f"/api/v1/courses/{uuid.uuid4()}/access", headers=auth_headers(learner))
        assert response.status_code == 404
