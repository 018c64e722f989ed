from __future__ import annotations

from datetime import datetime
from typing import Optional

from quizroster.schemas.base import ApiModel


class JoinSessionOut(ApiModel):
    id: str
    token: str
    status: str
    created_at: datetime
    expires_at: datetime
    consumed_count: int
    last_consumed_at: Optional[datetime] = None
    ttl_seconds: int
    join_url: str


class JoinSessionEnvelope(ApiModel):
    session: Optional[JoinSessionOut] = None
    ttl_minutes: int


class RevokeSessionRequest(ApiModel):
    session_id: str
