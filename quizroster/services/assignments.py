from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional, Sequence
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from quizroster import metrics
from quizroster.errors import InvalidInput
from quizroster.logger import get_logger
from quizroster.models.quiz import (
    ASSIGNMENT_ASSIGNED,
    ASSIGNMENT_SOURCES,
    LIVE_INSTANCE_STATUSES,
    SOURCE_QUIZ_CREATION,
    Quiz,
    QuizAssignment,
    QuizInstance,
)
from quizroster.services import groups as group_service
from quizroster.services.telemetry import ASSIGNMENT_CREATED, record_event
from quizroster.store import upsert_rows
from quizroster.utils import utcnow

_logger = get_logger("services.assignments")

_CONFLICT_TARGET = ("quiz_instance_id", "student_id")


def _assignment_row(
    quiz_instance_id: str, student_id: str, provenance: str, now: datetime
) -> dict:
    return {
        "id": str(uuid4()),
        "quiz_instance_id": quiz_instance_id,
        "student_id": student_id,
        "status": ASSIGNMENT_ASSIGNED,
        "assignment_source": provenance,
        "created_at": now,
        "updated_at": now,
    }


def _check_provenance(provenance: str) -> None:
    if provenance not in ASSIGNMENT_SOURCES:
        raise InvalidInput(f"Unknown assignment source: {provenance}")


async def fetch_live_instances(session: AsyncSession, group_id: str) -> List[QuizInstance]:
    result = await session.execute(
        select(QuizInstance)
        .where(
            QuizInstance.group_id == group_id,
            QuizInstance.status.in_(LIVE_INSTANCE_STATUSES),
        )
        .order_by(QuizInstance.created_at.asc())
    )
    return list(result.scalars().all())


async def fetch_quiz_titles(
    session: AsyncSession, instances: Sequence[QuizInstance]
) -> Dict[str, str]:
    """Map quiz instance id to its quiz title."""
    if not instances:
        return {}
    result = await session.execute(
        select(QuizInstance.id, Quiz.title)
        .join(Quiz, Quiz.id == QuizInstance.quiz_id)
        .where(QuizInstance.id.in_([instance.id for instance in instances]))
    )
    return {str(instance_id): title for instance_id, title in result.all()}


async def _insert_assignments(session: AsyncSession, rows: Sequence[dict]) -> List[dict]:
    return await upsert_rows(
        session,
        QuizAssignment.__table__,
        rows,
        conflict_columns=_CONFLICT_TARGET,
        on_conflict="none",
        returning=("quiz_instance_id", "student_id"),
    )


async def fan_out(
    session: AsyncSession,
    *,
    group_id: str,
    student_id: str,
    mentor_id: str,
    provenance: str,
    instances: Optional[Sequence[QuizInstance]] = None,
) -> int:
    """Ensure one assignment per live instance of the group for this student.

    Returns the number of live instances considered. Rows that already exist
    are left untouched, so repeated calls are no-ops.
    """
    _check_provenance(provenance)
    if instances is None:
        instances = await fetch_live_instances(session, group_id)
    if not instances:
        _logger.info(
            "fan_out.empty",
            "No live quiz instances to assign",
            group_id=group_id,
            student_id=student_id,
            assignment_source=provenance,
        )
        return 0

    now = utcnow()
    rows = [_assignment_row(instance.id, student_id, provenance, now) for instance in instances]
    created = await _insert_assignments(session, rows)
    created_ids = [row["quiz_instance_id"] for row in created]
    _logger.info(
        "fan_out.upsert",
        "Ensured quiz assignments for student",
        group_id=group_id,
        student_id=student_id,
        assignment_source=provenance,
        considered=len(rows),
        created=len(created_ids),
    )
    metrics.record_assignments_created(source=provenance, count=len(created_ids))
    if created_ids:
        await record_event(
            session,
            mentor_id,
            ASSIGNMENT_CREATED,
            {
                "student_id": student_id,
                "quiz_instance_ids": created_ids,
                "assignment_source": provenance,
            },
        )
    return len(rows)


async def fan_out_instance(
    session: AsyncSession,
    *,
    instance: QuizInstance,
    mentor_id: str,
) -> int:
    """Assign a newly created instance to every active member of its group."""
    if instance.status not in LIVE_INSTANCE_STATUSES:
        return 0
    student_ids = await group_service.list_active_member_ids(session, instance.group_id)
    if not student_ids:
        return 0

    now = utcnow()
    rows = [
        _assignment_row(instance.id, student_id, SOURCE_QUIZ_CREATION, now)
        for student_id in student_ids
    ]
    created = await _insert_assignments(session, rows)
    _logger.info(
        "fan_out.instance",
        "Assigned new quiz instance to group members",
        quiz_instance_id=instance.id,
        group_id=instance.group_id,
        considered=len(rows),
        created=len(created),
    )
    metrics.record_assignments_created(source=SOURCE_QUIZ_CREATION, count=len(created))
    if created:
        await record_event(
            session,
            mentor_id,
            ASSIGNMENT_CREATED,
            {
                "quiz_instance_id": instance.id,
                "student_ids": [row["student_id"] for row in created],
                "assignment_source": SOURCE_QUIZ_CREATION,
            },
        )
    return len(rows)
