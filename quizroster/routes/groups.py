from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from quizroster.config import get_settings
from quizroster.dependencies import (
    get_base_url,
    get_bulk_invite_limiter,
    get_db_session,
    get_identity_provider,
    get_notifier,
    require_mentor,
)
from quizroster.models.join_session import GroupJoinSession
from quizroster.schemas.groups import (
    AddStudentResult,
    AddStudentsRequest,
    AddStudentsResponse,
    GroupCreate,
    GroupOut,
)
from quizroster.schemas.join_sessions import (
    JoinSessionEnvelope,
    JoinSessionOut,
    RevokeSessionRequest,
)
from quizroster.security import Principal
from quizroster.services import bulk_invites as bulk_invite_service
from quizroster.services import groups as group_service
from quizroster.services import join_sessions as join_session_service
from quizroster.services.notifications import Notifier
from quizroster.services.rate_limits import FixedWindowRateLimiter
from quizroster.services.users import IdentityProvider
from quizroster.utils import utcnow

router = APIRouter(prefix="/groups", tags=["groups"])


def _envelope(
    join_session: Optional[GroupJoinSession], *, base_url: str
) -> JoinSessionEnvelope:
    ttl_minutes = get_settings().join_session_ttl_minutes
    if join_session is None:
        return JoinSessionEnvelope(session=None, ttl_minutes=ttl_minutes)
    view = join_session_service.session_view(join_session, base_url=base_url, now=utcnow())
    return JoinSessionEnvelope(session=JoinSessionOut(**view), ttl_minutes=ttl_minutes)


@router.post("", response_model=GroupOut, status_code=status.HTTP_201_CREATED)
async def create_group(
    payload: GroupCreate,
    principal: Principal = Depends(require_mentor),
    session: AsyncSession = Depends(get_db_session),
) -> GroupOut:
    group = await group_service.create_group(
        session, name=payload.name, mentor_id=principal.user_id, term=payload.term
    )
    return GroupOut.model_validate(group)


@router.get("", response_model=List[GroupOut])
async def list_groups(
    principal: Principal = Depends(require_mentor),
    session: AsyncSession = Depends(get_db_session),
) -> List[GroupOut]:
    groups = await group_service.list_groups_for_mentor(session, principal.user_id)
    return [GroupOut.model_validate(group) for group in groups]


@router.post("/{group_id}/archive", response_model=GroupOut)
async def archive_group(
    group_id: str,
    principal: Principal = Depends(require_mentor),
    session: AsyncSession = Depends(get_db_session),
) -> GroupOut:
    group = await group_service.archive_group(session, group_id, principal.user_id)
    return GroupOut.model_validate(group)


@router.post("/{group_id}/add-students", response_model=AddStudentsResponse)
async def add_students(
    group_id: str,
    payload: AddStudentsRequest,
    principal: Principal = Depends(require_mentor),
    session: AsyncSession = Depends(get_db_session),
    limiter: FixedWindowRateLimiter = Depends(get_bulk_invite_limiter),
    identity: IdentityProvider = Depends(get_identity_provider),
    notifier: Notifier = Depends(get_notifier),
) -> AddStudentsResponse:
    limiter.enforce(principal.user_id)
    outcome = await bulk_invite_service.add_students_to_group(
        session,
        group_id=group_id,
        emails=payload.emails,
        mentor_id=principal.user_id,
        identity=identity,
        notifier=notifier,
    )
    return AddStudentsResponse(
        results=[AddStudentResult.model_validate(item) for item in outcome.results],
        summary=outcome.summary,
    )


@router.post("/{group_id}/qr-session", response_model=JoinSessionEnvelope)
async def open_qr_session(
    group_id: str,
    response: Response,
    principal: Principal = Depends(require_mentor),
    session: AsyncSession = Depends(get_db_session),
    base_url: str = Depends(get_base_url),
) -> JoinSessionEnvelope:
    group = await group_service.ensure_mentor_owns_group(session, group_id, principal.user_id)
    group_service.ensure_not_archived(group)
    join_session, created = await join_session_service.get_or_create_active(
        session, group_id, principal.user_id
    )
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return _envelope(join_session, base_url=base_url)


@router.get("/{group_id}/qr-session", response_model=JoinSessionEnvelope)
async def poll_qr_session(
    group_id: str,
    principal: Principal = Depends(require_mentor),
    session: AsyncSession = Depends(get_db_session),
    base_url: str = Depends(get_base_url),
) -> JoinSessionEnvelope:
    await group_service.ensure_mentor_owns_group(session, group_id, principal.user_id)
    join_session = await join_session_service.get_active(session, group_id, principal.user_id)
    return _envelope(join_session, base_url=base_url)


@router.delete("/{group_id}/qr-session", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_qr_session(
    group_id: str,
    payload: RevokeSessionRequest,
    principal: Principal = Depends(require_mentor),
    session: AsyncSession = Depends(get_db_session),
) -> Response:
    await group_service.ensure_mentor_owns_group(session, group_id, principal.user_id)
    await join_session_service.revoke(
        session, payload.session_id, group_id=group_id, mentor_id=principal.user_id
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
