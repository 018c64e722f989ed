from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import Field

from quizroster.schemas.base import ApiModel


class GroupCreate(ApiModel):
    name: str = Field(min_length=1, max_length=255)
    term: Optional[str] = Field(default=None, max_length=64)


class GroupOut(ApiModel):
    id: str
    name: str
    term: Optional[str]
    mentor_id: str
    is_archived: bool
    created_at: datetime


class AddStudentsRequest(ApiModel):
    emails: List[str] = Field(default_factory=list)


class AddStudentResult(ApiModel):
    email: str
    status: str
    student_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    notes: Optional[str] = None
    reason: Optional[str] = None


class AddStudentsResponse(ApiModel):
    results: List[AddStudentResult]
    summary: Dict[str, int]
