"""Request/response models for progress endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class LessonProgressRequest(BaseModel):
    is_completed: bool
    progress: float = Field(0.0, ge=0.0, le=100.0)


class LessonProgressResponse(BaseModel):
    lesson_id: uuid.UUID
    course_id: uuid.UUID
    is_completed: bool
    progress: float
    total_lessons: int
    completed_lessons: int
    percentage: float
    course_completed: bool


class LessonProgressItem(BaseModel):
    lesson_id: uuid.UUID
    is_completed: bool
    progress: float
    completed_at: datetime | None = None
    last_accessed: datetime | None = None


class CourseProgressResponse(BaseModel):
    course_id: uuid.UUID
    total_lessons: int = 0
    completed_lessons: int = 0
    percentage: float = 0.0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    lessons: list[LessonProgressItem] = []
