from __future__ import annotations

from datetime import datetime
from typing import Any, Dict

from pydantic import Field

from quizroster.schemas.base import ApiModel


class EventOut(ApiModel):
    id: str
    actor_id: str
    event_type: str
    fields: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
