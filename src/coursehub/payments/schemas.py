"""Response models for purchase and payment endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel


class PurchaseResponse(BaseModel):
    status: str
    course_id: uuid.UUID
    order_id: str | None = None
    approval_url: str | None = None


class CaptureResponse(BaseModel):
    order_id: str
    status: str
    course_id: uuid.UUID


class PaymentResponse(BaseModel):
    id: uuid.UUID
    course_id: uuid.UUID
    provider_order_id: str
    amount: Decimal
    currency: str
    status: str
    created_at: datetime
