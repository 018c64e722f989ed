from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from quizroster import metrics
from quizroster.errors import Conflict, Forbidden, NotFound
from quizroster.logger import get_logger, token_hint
from quizroster.models.group import MEMBERSHIP_ACTIVE, GroupStudent
from quizroster.models.quiz import SOURCE_MENTOR_ADD, SOURCE_QR_JOIN, QuizInstance
from quizroster.services import assignments as assignment_service
from quizroster.services import groups as group_service
from quizroster.services import invites as invite_service
from quizroster.services import join_sessions as join_session_service
from quizroster.services.telemetry import (
    GROUP_INVITE_ACCEPTED,
    GROUP_QR_JOIN,
    GROUP_STUDENT_ADDED,
    record_event,
)
from quizroster.store import upsert_rows
from quizroster.utils import normalize_email, utcnow

_logger = get_logger("services.enrollment")


@dataclass(frozen=True)
class EnrollmentResult:
    already_member: bool
    assigned_count: int


@dataclass(frozen=True)
class JoinOutcome:
    joined: bool
    already_member: bool
    assignments_created: int
    group_id: str
    group_name: str

    @property
    def message(self) -> str:
        if self.already_member:
            return "You are already a member of this group"
        return f'You have successfully joined the group "{self.group_name}"'


async def upsert_membership(
    session: AsyncSession,
    group_id: str,
    student_id: str,
    *,
    now: Optional[datetime] = None,
) -> bool:
    """Insert the membership row; return True only if this call created it."""
    current = now or utcnow()
    inserted = await upsert_rows(
        session,
        GroupStudent.__table__,
        [
            {
                "id": str(uuid4()),
                "group_id": group_id,
                "student_id": student_id,
                "status": MEMBERSHIP_ACTIVE,
                "joined_at": current,
                "created_at": current,
                "updated_at": current,
            }
        ],
        conflict_columns=("group_id", "student_id"),
        on_conflict="none",
    )
    return bool(inserted)


async def enroll(
    session: AsyncSession,
    *,
    group_id: str,
    student_id: str,
    mentor_id: str,
    provenance: str,
    instances: Optional[Sequence[QuizInstance]] = None,
) -> EnrollmentResult:
    """Make ``student_id`` a member of ``group_id`` and fan out live quizzes.

    Safe to retry: the membership insert decides whether this call is the one
    that created the membership, and only that call fans out.
    """
    created = await upsert_membership(session, group_id, student_id)
    metrics.record_enrollment(source=provenance, already_member=not created)
    if not created:
        _logger.info(
            "enroll.existing",
            "Student already a member, skipping fan-out",
            group_id=group_id,
            student_id=student_id,
            assignment_source=provenance,
        )
        return EnrollmentResult(already_member=True, assigned_count=0)

    assigned_count = await assignment_service.fan_out(
        session,
        group_id=group_id,
        student_id=student_id,
        mentor_id=mentor_id,
        provenance=provenance,
        instances=instances,
    )
    await record_event(
        session,
        mentor_id,
        GROUP_STUDENT_ADDED,
        {
            "group_id": group_id,
            "student_id": student_id,
            "assignment_source": provenance,
            "quizzes_assigned": assigned_count,
        },
    )
    _logger.info(
        "enroll.created",
        "Enrolled student",
        group_id=group_id,
        student_id=student_id,
        assignment_source=provenance,
        quizzes_assigned=assigned_count,
    )
    return EnrollmentResult(already_member=False, assigned_count=assigned_count)


async def join_with_token(
    session: AsyncSession,
    *,
    token: str,
    student_id: str,
    now: Optional[datetime] = None,
) -> JoinOutcome:
    current = now or utcnow()
    async with _logger.operation(
        "group.qr_join",
        "Processing QR join",
        student_id=student_id,
        token_hint=token_hint(token),
    ) as op:
        redemption = await join_session_service.redeem(session, token, now=current)
        op.step("session.redeem", "Redeemed join session", session_id=redemption.session_id)

        group = await group_service.get_group(session, redemption.group_id)
        if group is None:
            raise NotFound("Group not found")
        group_service.ensure_not_archived(group)
        if group.mentor_id != redemption.mentor_id:
            _logger.warning(
                "group.qr_join.mentor_mismatch",
                "Join session mentor does not own the group",
                group_id=group.id,
                session_id=redemption.session_id,
                expected_mentor=group.mentor_id,
                actual_mentor=redemption.mentor_id,
            )
            raise Conflict("QR session is invalid")

        result = await enroll(
            session,
            group_id=group.id,
            student_id=student_id,
            mentor_id=redemption.mentor_id,
            provenance=SOURCE_QR_JOIN,
        )
        op.step(
            "membership.upsert",
            "Applied membership",
            already_member=result.already_member,
            assigned=result.assigned_count,
        )

        await join_session_service.record_consumption(
            session,
            redemption.session_id,
            created=not result.already_member,
            now=current,
        )
        await record_event(
            session,
            redemption.mentor_id,
            GROUP_QR_JOIN,
            {
                "group_id": group.id,
                "student_id": student_id,
                "already_member": result.already_member,
                "assignments_created": result.assigned_count,
            },
        )
        await session.commit()
        op.step("db.commit", "Committed QR join")
        return JoinOutcome(
            joined=not result.already_member,
            already_member=result.already_member,
            assignments_created=result.assigned_count,
            group_id=group.id,
            group_name=group.name,
        )


async def accept_invite(
    session: AsyncSession,
    *,
    token: str,
    student_id: str,
    student_email: str,
    now: Optional[datetime] = None,
) -> JoinOutcome:
    current = now or utcnow()
    async with _logger.operation(
        "group.invite_accept",
        "Accepting group invite",
        student_id=student_id,
    ) as op:
        invite = await invite_service.verify(session, token, now=current)
        if invite.email != normalize_email(student_email):
            raise Forbidden("This invite was issued to a different email address")

        group = await group_service.get_group(session, invite.group_id)
        if group is None:
            raise NotFound("Group not found")
        group_service.ensure_not_archived(group)

        await invite_service.redeem(session, token, accepted_by=student_id, now=current)
        op.step("invite.redeem", "Accepted invite", invite_id=invite.id)

        result = await enroll(
            session,
            group_id=group.id,
            student_id=student_id,
            mentor_id=invite.invited_by,
            provenance=SOURCE_MENTOR_ADD,
        )
        await record_event(
            session,
            invite.invited_by,
            GROUP_INVITE_ACCEPTED,
            {
                "group_id": group.id,
                "student_id": student_id,
                "already_member": result.already_member,
                "assignments_created": result.assigned_count,
            },
        )
        await session.commit()
        op.step("db.commit", "Committed invite acceptance", already_member=result.already_member)
        return JoinOutcome(
            joined=not result.already_member,
            already_member=result.already_member,
            assignments_created=result.assigned_count,
            group_id=group.id,
            group_name=group.name,
        )
