"""Course purchase flow: provider orders, captures and entitlement grants."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.achievements.engine import AchievementCheck, TriggerKind
from coursehub.db.models import (
    PAYMENT_COMPLETED,
    PAYMENT_FAILED,
    PAYMENT_PENDING,
    Account,
    Course,
    Payment,
)
from coursehub.email.service import get_email_service
from coursehub.entitlements.service import grant_entitlement, has_purchase
from coursehub.errors import NotFound
from coursehub.payments.provider import PaymentProvider

logger = logging.getLogger(__name__)

STATUS_GRANTED = "granted"
STATUS_ALREADY_PURCHASED = "already_purchased"
STATUS_PENDING = "pending"


@dataclass
class PurchaseOutcome:
    status: str
    course_id: uuid.UUID
    order_id: str | None = None
    approval_url: str | None = None
    pending_checks: list[AchievementCheck] = field(default_factory=list)


@dataclass
class CaptureOutcome:
    order_id: str
    status: str
    course_id: uuid.UUID
    pending_checks: list[AchievementCheck] = field(default_factory=list)


def purchase_reference(account_id: uuid.UUID, course_id: uuid.UUID) -> str:
    """Value sent as the order's ``custom_id`` and echoed back in webhooks."""
    return f"{account_id}:{course_id}"


async def parse_purchase_reference(db: AsyncSession, reference: str | None) -> tuple[uuid.UUID, uuid.UUID] | None:
    """Resolve a ``custom_id`` back to (account id, course id).

    The course part may be a course UUID or the course's external product id.
    """
    if not reference or ":" not in reference:
        return None
    account_part, _, course_part = reference.partition(":")
    try:
        account_id = uuid.UUID(account_part)
    except ValueError:
        return None
    try:
        return account_id, uuid.UUID(course_part)
    except ValueError:
        pass
    result = await db.execute(select(Course.id).where(Course.external_product_id == course_part))
    course_id = result.scalar_one_or_none()
    if course_id is None:
        return None
    return account_id, course_id


async def get_course(db: AsyncSession, course_id: uuid.UUID) -> Course:
    course = await db.get(Course, course_id)
    if course is None or not course.is_published:
        raise NotFound("Course not found")
    return course


async def start_purchase(
    db: AsyncSession,
    provider: PaymentProvider,
    account: Account,
    course_id: uuid.UUID,
) -> PurchaseOutcome:
    """Begin buying a course.

    Free courses are granted immediately; paid courses get a provider order
    whose approval URL the client must visit.
    """
    course = await get_course(db, course_id)

    if await has_purchase(db, account.id, course.id):
        return PurchaseOutcome(status=STATUS_ALREADY_PURCHASED, course_id=course.id)

    if course.is_free:
        created = await grant_entitlement(db, account.id, course.id)
        await db.commit()
        if not created:
            return PurchaseOutcome(status=STATUS_ALREADY_PURCHASED, course_id=course.id)
        return PurchaseOutcome(
            status=STATUS_GRANTED,
            course_id=course.id,
            pending_checks=[AchievementCheck(account.id, TriggerKind.ENROLLMENT.value)],
        )

    order = await provider.create_order(
        amount=course.price,
        currency=course.currency,
        custom_id=purchase_reference(account.id, course.id),
        description=course.title,
    )
    db.add(
        Payment(
            account_id=account.id,
            course_id=course.id,
            provider_order_id=order.order_id,
            amount=course.price,
            currency=course.currency,
            status=PAYMENT_PENDING,
        )
    )
    await db.commit()
    logger.info("Created provider order %s for course %s", order.order_id, course.id)
    return PurchaseOutcome(
        status=STATUS_PENDING,
        course_id=course.id,
        order_id=order.order_id,
        approval_url=order.approval_url,
    )


async def get_payment_by_order(db: AsyncSession, order_id: str) -> Payment | None:
    result = await db.execute(select(Payment).where(Payment.provider_order_id == order_id))
    return result.scalar_one_or_none()


async def complete_payment(db: AsyncSession, payment: Payment, capture_id: str | None) -> bool:
    """Mark a payment completed and grant its course. Does not commit.

    Returns True if the entitlement was newly created.
    """
    payment.status = PAYMENT_COMPLETED
    if capture_id:
        payment.capture_id = capture_id
    await db.flush()
    return await grant_entitlement(db, payment.account_id, payment.course_id, payment.id)


async def fail_payment(db: AsyncSession, payment: Payment) -> None:
    """Mark a pending payment failed. Completed payments are left alone."""
    if payment.status == PAYMENT_PENDING:
        payment.status = PAYMENT_FAILED
        await db.flush()


async def capture_order(
    db: AsyncSession,
    provider: PaymentProvider,
    account: Account,
    order_id: str,
) -> CaptureOutcome:
    """Capture an approved order and grant the course on success.

    Raises:
        NotFound: If the order does not belong to the account.
    """
    payment = await get_payment_by_order(db, order_id)
    if payment is None or payment.account_id != account.id:
        raise NotFound("Order not found")

    if payment.status == PAYMENT_COMPLETED:
        return CaptureOutcome(order_id=order_id, status=PAYMENT_COMPLETED, course_id=payment.course_id)

    result = await provider.capture_order(order_id)
    if not result.completed:
        logger.info("Order %s capture returned status %s", order_id, result.status)
        return CaptureOutcome(order_id=order_id, status=payment.status, course_id=payment.course_id)

    created = await complete_payment(db, payment, result.capture_id)
    await db.commit()

    checks: list[AchievementCheck] = []
    if created:
        checks.append(AchievementCheck(account.id, TriggerKind.ENROLLMENT.value))
        await send_purchase_receipt(db, account, payment)
    return CaptureOutcome(
        order_id=order_id,
        status=PAYMENT_COMPLETED,
        course_id=payment.course_id,
        pending_checks=checks,
    )


async def send_purchase_receipt(db: AsyncSession, account: Account, payment: Payment) -> None:
    """Fire-and-forget receipt email."""
    try:
        course = await db.get(Course, payment.course_id)
        await get_email_service().send_template(
            to=account.email,
            template_name="purchase_receipt",
            context={
                "name": account.name,
                "course_title": course.title if course else "",
                "amount": f"{payment.amount:.2f} {payment.currency}",
            },
        )
    except Exception:
        logger.warning("Failed to send purchase receipt for payment %s", payment.id, exc_info=True)


async def list_payments(db: AsyncSession, account_id: uuid.UUID) -> list[Payment]:
    result = await db.execute(
        select(Payment).where(Payment.account_id == account_id).order_by(Payment.created_at.desc())
    )
    return list(result.scalars().all())
