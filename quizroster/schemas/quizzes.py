from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import Field

from quizroster.schemas.base import ApiModel


class QuizCreate(ApiModel):
    title: str = Field(min_length=1, max_length=255)


class QuizOut(ApiModel):
    id: str
    title: str
    mentor_id: str
    created_at: datetime


class QuizInstanceCreate(ApiModel):
    group_id: str
    status: str = "scheduled"
    scheduled_at: Optional[datetime] = None
    duration_seconds: int = Field(default=300, gt=0)


class QuizInstanceOut(ApiModel):
    id: str
    quiz_id: str
    group_id: str
    status: str
    scheduled_at: Optional[datetime]
    duration_seconds: int
    created_at: datetime
    members_assigned: int = 0
