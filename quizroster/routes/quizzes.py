from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from quizroster.dependencies import get_db_session, require_mentor
from quizroster.schemas.quizzes import QuizCreate, QuizInstanceCreate, QuizInstanceOut, QuizOut
from quizroster.security import Principal
from quizroster.services import quizzes as quiz_service

router = APIRouter(prefix="/quizzes", tags=["quizzes"])


@router.post("", response_model=QuizOut, status_code=status.HTTP_201_CREATED)
async def create_quiz(
    payload: QuizCreate,
    principal: Principal = Depends(require_mentor),
    session: AsyncSession = Depends(get_db_session),
) -> QuizOut:
    quiz = await quiz_service.create_quiz(session, title=payload.title, mentor_id=principal.user_id)
    return QuizOut.model_validate(quiz)


@router.post(
    "/{quiz_id}/instances",
    response_model=QuizInstanceOut,
    status_code=status.HTTP_201_CREATED,
)
async def create_instance(
    quiz_id: str,
    payload: QuizInstanceCreate,
    principal: Principal = Depends(require_mentor),
    session: AsyncSession = Depends(get_db_session),
) -> QuizInstanceOut:
    instance, assigned = await quiz_service.create_instance(
        session,
        quiz_id=quiz_id,
        group_id=payload.group_id,
        mentor_id=principal.user_id,
        status=payload.status,
        scheduled_at=payload.scheduled_at,
        duration_seconds=payload.duration_seconds,
    )
    out = QuizInstanceOut.model_validate(instance)
    out.members_assigned = assigned
    return out
