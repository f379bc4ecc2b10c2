"""Subscription lifecycle: checkout, activation, cancellation and expiry."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.db.models import Account, Subscription, SubscriptionPlan
from coursehub.db.upsert import insert_for
from coursehub.errors import NotFound
from coursehub.payments.provider import PaymentProvider, ProviderSubscription

logger = logging.getLogger(__name__)


async def list_plans(db: AsyncSession) -> list[SubscriptionPlan]:
    result = await db.execute(
        select(SubscriptionPlan).where(SubscriptionPlan.is_active.is_(True)).order_by(SubscriptionPlan.price)
    )
    return list(result.scalars().all())


async def get_plan_by_provider_id(db: AsyncSession, provider_plan_id: str | None) -> SubscriptionPlan | None:
    if not provider_plan_id:
        return None
    result = await db.execute(select(SubscriptionPlan).where(SubscriptionPlan.provider_plan_id == provider_plan_id))
    return result.scalar_one_or_none()


async def get_by_provider_id(db: AsyncSession, provider_subscription_id: str) -> Subscription | None:
    result = await db.execute(
        select(Subscription).where(Subscription.provider_subscription_id == provider_subscription_id)
    )
    return result.scalar_one_or_none()


async def get_active_subscription(db: AsyncSession, account_id: uuid.UUID) -> Subscription | None:
    result = await db.execute(
        select(Subscription).where(
            Subscription.account_id == account_id,
            Subscription.is_active.is_(True),
        )
    )
    return result.scalar_one_or_none()


async def start_subscription(
    db: AsyncSession,
    provider: PaymentProvider,
    account: Account,
    plan_id: uuid.UUID,
) -> ProviderSubscription:
    """Create a provider subscription awaiting approval.

    The local row stays inactive until the provider confirms activation.
    """
    plan = await db.get(SubscriptionPlan, plan_id)
    if plan is None or not plan.is_active:
        raise NotFound("Plan not found")

    created = await provider.create_subscription(
        plan_id=plan.provider_plan_id,
        custom_id=str(account.id),
        subscriber_email=account.email,
    )
    db.add(
        Subscription(
            account_id=account.id,
            plan_id=plan.id,
            provider_subscription_id=created.subscription_id,
            is_active=False,
        )
    )
    await db.commit()
    logger.info("Started subscription %s for account %s", created.subscription_id, account.id)
    return created


async def activate_subscription(
    db: AsyncSession,
    account_id: uuid.UUID,
    provider_subscription_id: str,
    plan_id: uuid.UUID | None,
    start_time: datetime | None,
    end_time: datetime | None,
) -> None:
    """Make this the account's only active subscription. Does not commit."""
    now = datetime.now(timezone.utc)

    # Deactivate first: at most one active row per account
    await db.execute(
        update(Subscription)
        .where(
            Subscription.account_id == account_id,
            Subscription.is_active.is_(True),
            Subscription.provider_subscription_id != provider_subscription_id,
        )
        .values(is_active=False, end_time=now, updated_at=now)
    )

    stmt = insert_for(db, Subscription).values(
        id=uuid.uuid4(),
        account_id=account_id,
        plan_id=plan_id,
        provider_subscription_id=provider_subscription_id,
        is_active=True,
        start_time=start_time or now,
        end_time=end_time,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["provider_subscription_id"],
        set_={
            "is_active": True,
            "plan_id": stmt.excluded.plan_id,
            "start_time": stmt.excluded.start_time,
            "end_time": stmt.excluded.end_time,
            "updated_at": stmt.excluded.updated_at,
        },
    )
    await db.execute(stmt)

    await db.execute(
        update(Account).where(Account.id == account_id).values(subscription_expires_at=end_time, updated_at=now)
    )
    logger.info("Activated subscription %s for account %s", provider_subscription_id, account_id)


async def deactivate_subscription(
    db: AsyncSession,
    provider_subscription_id: str,
    now: datetime | None = None,
) -> Subscription | None:
    """Deactivate and end a subscription now. Does not commit.

    A row that is already inactive (for example superseded by a newer
    activation) keeps its end time, and the account's expiry is only moved
    when no other active subscription remains.
    """
    now = now or datetime.now(timezone.utc)
    subscription = await get_by_provider_id(db, provider_subscription_id)
    if subscription is None:
        logger.warning("Deactivation for unknown subscription %s", provider_subscription_id)
        return None
    if not subscription.is_active:
        if subscription.end_time is None:
            subscription.end_time = now
            subscription.updated_at = now
            await db.flush()
        return subscription

    subscription.is_active = False
    subscription.end_time = now
    subscription.updated_at = now
    await db.flush()

    if await get_active_subscription(db, subscription.account_id) is None:
        await db.execute(
            update(Account).where(Account.id == subscription.account_id).values(subscription_expires_at=now)
        )
    return subscription


async def record_payment_failure(
    db: AsyncSession,
    provider_subscription_id: str,
    now: datetime | None = None,
) -> Subscription | None:
    """Stamp a failed renewal payment. Does not commit."""
    now = now or datetime.now(timezone.utc)
    subscription = await get_by_provider_id(db, provider_subscription_id)
    if subscription is None:
        logger.warning("Payment failure for unknown subscription %s", provider_subscription_id)
        return None
    subscription.last_payment_failed_at = now
    subscription.updated_at = now
    await db.flush()
    return subscription


async def cancel_subscription(
    db: AsyncSession,
    provider: PaymentProvider,
    account: Account,
    subscription_id: uuid.UUID,
    reason: str = "Cancelled by user",
) -> Subscription:
    """Cancel one of the account's subscriptions at the provider and locally."""
    subscription = await db.get(Subscription, subscription_id)
    if subscription is None or subscription.account_id != account.id:
        raise NotFound("Subscription not found")

    await provider.cancel_subscription(subscription.provider_subscription_id, reason)
    await deactivate_subscription(db, subscription.provider_subscription_id)
    await db.commit()
    return subscription


async def expire_lapsed_subscriptions(db: AsyncSession, now: datetime | None = None) -> int:
    """Deactivate active subscriptions whose end time has passed. Returns count."""
    now = now or datetime.now(timezone.utc)
    result = await db.execute(
        update(Subscription)
        .where(
            Subscription.is_active.is_(True),
            Subscription.end_time.is_not(None),
            Subscription.end_time <= now,
        )
        .values(is_active=False, updated_at=now)
    )
    await db.commit()
    return result.rowcount
