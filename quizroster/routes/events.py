from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from quizroster.dependencies import get_db_session, require_mentor
from quizroster.schemas.events import EventOut
from quizroster.security import Principal
from quizroster.services import telemetry as telemetry_service

router = APIRouter(prefix="/events", tags=["events"])


@router.get("", response_model=List[EventOut])
async def list_events(
    limit: int = 200,
    event_type: Optional[str] = None,
    principal: Principal = Depends(require_mentor),
    session: AsyncSession = Depends(get_db_session),
) -> List[EventOut]:
    bounded_limit = max(1, min(limit, 1000))
    events = await telemetry_service.list_events(
        session, actor_id=principal.user_id, event_type=event_type, limit=bounded_limit
    )
    return [EventOut.model_validate(event) for event in events]
