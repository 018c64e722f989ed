from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from quizroster.dependencies import get_db_session, require_student
from quizroster.schemas.join import JoinResponse, TokenRequest
from quizroster.security import Principal
from quizroster.services import enrollment as enrollment_service

router = APIRouter(tags=["join"])


@router.post("/join-with-token", response_model=JoinResponse)
async def join_with_token(
    payload: TokenRequest,
    principal: Principal = Depends(require_student),
    session: AsyncSession = Depends(get_db_session),
) -> JoinResponse:
    outcome = await enrollment_service.join_with_token(
        session, token=payload.token.strip(), student_id=principal.user_id
    )
    return JoinResponse(
        joined=outcome.joined,
        already_member=outcome.already_member,
        assignments_created=outcome.assignments_created,
        group_id=outcome.group_id,
        group_name=outcome.group_name,
        message=outcome.message,
    )
