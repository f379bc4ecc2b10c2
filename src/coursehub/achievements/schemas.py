"""Pydantic models for achievement endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class AchievementResponse(BaseModel):
    id: uuid.UUID
    name: str
    description: str
    icon: str | None = None
    trigger_type: str
    trigger_value: int
    is_active: bool = True


class EarnedAchievementResponse(BaseModel):
    id: uuid.UUID
    name: str
    description: str
    icon: str | None = None
    earned_at: datetime | None = None


class AchievementCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = ""
    icon: str | None = Field(None, max_length=64)
    trigger_type: str = Field(..., min_length=1, max_length=32)
    trigger_value: int = Field(1, ge=0)
    is_active: bool = True


class AchievementCheckRequest(BaseModel):
    account_id: uuid.UUID
    action: str = Field(..., min_length=1, max_length=32)
    value: int | None = None


class AchievementCheckResponse(BaseModel):
    awarded: list[AchievementResponse]


class AchievementUpdateRequest(BaseModel):
    """Partial update; omitted fields keep their current value."""

    name: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = None
    icon: str | None = Field(None, max_length=64)
    trigger_type: str | None = Field(None, min_length=1, max_length=32)
    trigger_value: int | None = Field(None, ge=0)
    is_active: bool | None = None
