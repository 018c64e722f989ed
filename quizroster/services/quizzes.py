from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from quizroster.errors import Forbidden, InvalidInput, NotFound
from quizroster.logger import get_logger
from quizroster.models.quiz import INSTANCE_STATUSES, Quiz, QuizInstance
from quizroster.services import assignments as assignment_service
from quizroster.services import groups as group_service
from quizroster.services.telemetry import QUIZ_INSTANCE_CREATED, record_event

_logger = get_logger("services.quizzes")


async def get_quiz(session: AsyncSession, quiz_id: str) -> Optional[Quiz]:
    return await session.get(Quiz, quiz_id)


async def create_quiz(session: AsyncSession, *, title: str, mentor_id: str) -> Quiz:
    cleaned = title.strip()
    if not cleaned:
        raise InvalidInput("Quiz title is required")
    quiz = Quiz(id=str(uuid4()), title=cleaned, mentor_id=mentor_id)
    session.add(quiz)
    await session.commit()
    _logger.info("quiz.create", "Created quiz", quiz_id=quiz.id, mentor_id=mentor_id)
    return quiz


async def create_instance(
    session: AsyncSession,
    *,
    quiz_id: str,
    group_id: str,
    mentor_id: str,
    status: str = "scheduled",
    scheduled_at: Optional[datetime] = None,
    duration_seconds: int = 300,
) -> tuple[QuizInstance, int]:
    """Schedule a quiz for a group and assign it to the current members.

    Returns the instance and the number of members it was fanned out to.
    """
    if status not in INSTANCE_STATUSES:
        raise InvalidInput(f"Unknown quiz instance status: {status}")
    if duration_seconds <= 0:
        raise InvalidInput("duration_seconds must be positive")

    quiz = await get_quiz(session, quiz_id)
    if quiz is None:
        raise NotFound("Quiz not found")
    if quiz.mentor_id != mentor_id:
        raise Forbidden("You do not have permission to schedule this quiz")
    group = await group_service.ensure_mentor_owns_group(session, group_id, mentor_id)
    group_service.ensure_not_archived(group)

    async with _logger.operation(
        "quiz.instance_create",
        "Creating quiz instance",
        quiz_id=quiz_id,
        group_id=group_id,
    ) as op:
        instance = QuizInstance(
            id=str(uuid4()),
            quiz_id=quiz_id,
            group_id=group_id,
            status=status,
            scheduled_at=scheduled_at,
            duration_seconds=duration_seconds,
        )
        session.add(instance)
        await session.flush()
        assigned = await assignment_service.fan_out_instance(
            session, instance=instance, mentor_id=mentor_id
        )
        op.step("fan_out", "Assigned instance to members", members=assigned)
        await record_event(
            session,
            mentor_id,
            QUIZ_INSTANCE_CREATED,
            {
                "quiz_id": quiz_id,
                "quiz_instance_id": instance.id,
                "group_id": group_id,
                "members_assigned": assigned,
            },
        )
        await session.commit()
        return instance, assigned
