from __future__ import annotations

from urllib.parse import urlencode

from fastapi import APIRouter, Depends, status
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from quizroster.dependencies import get_db_session, require_student
from quizroster.errors import NotFound
from quizroster.schemas.join import JoinResponse, TokenRequest
from quizroster.security import Principal
from quizroster.services import enrollment as enrollment_service
from quizroster.services import invites as invite_service
from quizroster.services.users import get_user

router = APIRouter(prefix="/invites", tags=["invites"])


@router.get("/{token}", include_in_schema=False)
async def open_invite(
    token: str,
    session: AsyncSession = Depends(get_db_session),
) -> RedirectResponse:
    invite = await invite_service.verify(session, token)
    query = urlencode({"invite_token": token, "email": invite.email, "group_id": invite.group_id})
    return RedirectResponse(url=f"/signup?{query}", status_code=status.HTTP_302_FOUND)


@router.post("/accept", response_model=JoinResponse)
async def accept_invite(
    payload: TokenRequest,
    principal: Principal = Depends(require_student),
    session: AsyncSession = Depends(get_db_session),
) -> JoinResponse:
    user = await get_user(session, principal.user_id)
    if user is None:
        raise NotFound("User not found")
    outcome = await enrollment_service.accept_invite(
        session,
        token=payload.token.strip(),
        student_id=user.id,
        student_email=user.email,
    )
    return JoinResponse(
        joined=outcome.joined,
        already_member=outcome.already_member,
        assignments_created=outcome.assignments_created,
        group_id=outcome.group_id,
        group_name=outcome.group_name,
        message=outcome.message,
    )
