from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from quizroster import metrics
from quizroster.errors import InvalidInput
from quizroster.logger import get_logger
from quizroster.models.quiz import SOURCE_MENTOR_ADD, QuizInstance
from quizroster.services import enrollment as enrollment_service
from quizroster.services import groups as group_service
from quizroster.services import invites as invite_service
from quizroster.services.assignments import fetch_live_instances, fetch_quiz_titles
from quizroster.services.notifications import (
    AssignedQuiz,
    Notifier,
    deliver_assignment_notice,
    deliver_invite,
)
from quizroster.services.telemetry import GROUP_INVITE_BULK, record_event
from quizroster.services.users import IdentityProvider
from quizroster.utils import is_valid_email, normalize_email, utcnow

_logger = get_logger("services.bulk_invites")

STATUS_ADDED = "added"
STATUS_INVITED = "invited"
STATUS_ALREADY_MEMBER = "already_member"
STATUS_ALREADY_INVITED = "already_invited"
STATUS_FAILED = "failed"

SUMMARY_KEYS = (
    STATUS_ADDED,
    STATUS_INVITED,
    STATUS_ALREADY_MEMBER,
    STATUS_ALREADY_INVITED,
    STATUS_FAILED,
)


@dataclass
class EmailResult:
    email: str
    status: str
    student_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    notes: Optional[str] = None
    reason: Optional[str] = None


@dataclass
class BulkInviteResult:
    results: List[EmailResult] = field(default_factory=list)
    summary: Dict[str, int] = field(default_factory=dict)


def normalize_emails(emails: Iterable[str]) -> List[str]:
    """Trim, lower-case, drop blanks and de-duplicate in first-seen order."""
    seen: Dict[str, None] = {}
    for raw in emails:
        email = normalize_email(raw or "")
        if email:
            seen.setdefault(email, None)
    return list(seen)


def _assignment_note(count: int) -> str:
    return f"assigned {count} quiz{'zes' if count != 1 else ''}"


def summarize(results: Iterable[EmailResult]) -> Dict[str, int]:
    summary = {key: 0 for key in SUMMARY_KEYS}
    for item in results:
        summary[item.status] = summary.get(item.status, 0) + 1
    return summary


async def add_students_to_group(
    session: AsyncSession,
    *,
    group_id: str,
    emails: Iterable[str],
    mentor_id: str,
    identity: IdentityProvider,
    notifier: Notifier,
    now: Optional[datetime] = None,
) -> BulkInviteResult:
    """Enroll existing accounts and invite everyone else.

    Each email is processed in its own savepoint; a failure is recorded as a
    ``failed`` entry and the rest of the batch continues.
    """
    current = now or utcnow()
    normalized = normalize_emails(emails)
    if not normalized:
        raise InvalidInput("At least one email address is required")

    async with _logger.operation(
        "group.bulk_add",
        "Adding students to group",
        group_id=group_id,
        mentor_id=mentor_id,
        total_emails=len(normalized),
    ) as op:
        group = await group_service.ensure_mentor_owns_group(session, group_id, mentor_id)
        group_service.ensure_not_archived(group)
        group_name = group.name
        instances = await fetch_live_instances(session, group_id)
        titles = await fetch_quiz_titles(session, instances)
        op.step("instances.load", "Loaded live quiz instances", count=len(instances))

        results: List[EmailResult] = []
        for email in normalized:
            try:
                async with session.begin_nested():
                    item = await _process_email(
                        session,
                        email=email,
                        group_id=group_id,
                        mentor_id=mentor_id,
                        instances=instances,
                        identity=identity,
                        now=current,
                    )
            except Exception as exc:  # noqa: BLE001
                _logger.warning(
                    "group.bulk_add.email_failed",
                    "Failed to process email",
                    group_id=group_id,
                    email=email,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                item = (EmailResult(email=email, status=STATUS_FAILED, reason=str(exc)), None)

            result, token = item
            results.append(result)
            metrics.record_bulk_result(status=result.status)

            if result.status == STATUS_INVITED and token is not None and result.expires_at:
                await deliver_invite(
                    notifier,
                    email=email,
                    token=token,
                    group_name=group_name,
                    expires_at=result.expires_at,
                )
            elif result.status == STATUS_ADDED:
                await deliver_assignment_notice(
                    notifier,
                    email=email,
                    group_name=group_name,
                    assignments=[
                        AssignedQuiz(quiz_instance_id=inst.id, quiz_title=titles.get(inst.id))
                        for inst in instances
                    ],
                )

        summary = summarize(results)
        await record_event(
            session,
            mentor_id,
            GROUP_INVITE_BULK,
            {"group_id": group_id, "total_emails": len(normalized), "summary": summary},
        )
        await session.commit()
        op.step("db.commit", "Committed bulk add", **summary)
        return BulkInviteResult(results=results, summary=summary)


async def _process_email(
    session: AsyncSession,
    *,
    email: str,
    group_id: str,
    mentor_id: str,
    instances: Sequence[QuizInstance],
    identity: IdentityProvider,
    now: datetime,
) -> tuple[EmailResult, Optional[str]]:
    if not is_valid_email(email):
        raise InvalidInput(f"Invalid email address: {email}")

    student_id = await identity.find_user_id(session, email)
    if student_id is not None:
        enrolled = await enrollment_service.enroll(
            session,
            group_id=group_id,
            student_id=student_id,
            mentor_id=mentor_id,
            provenance=SOURCE_MENTOR_ADD,
            instances=instances,
        )
        if enrolled.already_member:
            return EmailResult(email=email, status=STATUS_ALREADY_MEMBER, student_id=student_id), None
        return (
            EmailResult(
                email=email,
                status=STATUS_ADDED,
                student_id=student_id,
                notes=_assignment_note(enrolled.assigned_count),
            ),
            None,
        )

    existing = await invite_service.find_pending_invite(
        session, group_id=group_id, email=email, now=now
    )
    if existing is not None:
        return (
            EmailResult(email=email, status=STATUS_ALREADY_INVITED, expires_at=existing.expires_at),
            None,
        )

    issued = await invite_service.upsert_pending_invite(
        session, group_id=group_id, email=email, mentor_id=mentor_id, now=now
    )
    return (
        EmailResult(email=email, status=STATUS_INVITED, expires_at=issued.invite.expires_at),
        issued.token,
    )
