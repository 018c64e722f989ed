from __future__ import annotations

from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from quizroster.logger import get_logger
from quizroster.models.telemetry_event import TelemetryEvent

_logger = get_logger("services.telemetry")

GROUP_STUDENT_ADDED = "group_student_added"
ASSIGNMENT_CREATED = "assignment_created"
GROUP_INVITE_CREATED = "group_invite_created"
GROUP_INVITE_BULK = "group_invite_bulk"
GROUP_INVITE_ACCEPTED = "group_invite_accepted"
GROUP_QR_JOIN = "group_qr_join"
GROUP_QR_SESSION_REVOKED = "group_qr_session_revoked"
QUIZ_INSTANCE_CREATED = "quiz_instance_created"


async def record_event(
    session: AsyncSession,
    actor_id: str,
    event_type: str,
    fields: Optional[Dict[str, Any]] = None,
) -> Optional[TelemetryEvent]:
    """Write a telemetry row without ever failing the caller.

    The insert runs in a savepoint so a failed write is rolled back on its own
    and the surrounding enrollment transaction stays usable.
    """
    event = TelemetryEvent(
        id=str(uuid4()),
        actor_id=actor_id,
        event_type=event_type,
        fields=fields or {},
    )
    try:
        async with session.begin_nested():
            session.add(event)
    except SQLAlchemyError as exc:
        _logger.warning(
            "telemetry.record_failed",
            "Telemetry insert failed, dropping event",
            event_type=event_type,
            actor_id=actor_id,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return None
    _logger.info(
        "telemetry.record",
        "Recorded telemetry event",
        event_id=event.id,
        event_type=event_type,
        actor_id=actor_id,
    )
    return event


async def list_events(
    session: AsyncSession,
    *,
    actor_id: str,
    event_type: Optional[str] = None,
    limit: int = 200,
) -> List[TelemetryEvent]:
    query = (
        select(TelemetryEvent)
        .where(TelemetryEvent.actor_id == actor_id)
        .order_by(TelemetryEvent.created_at.desc())
    )
    if event_type:
        query = query.where(TelemetryEvent.event_type == event_type)
    result = await session.execute(query.limit(limit))
    return list(result.scalars().all())
