from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol, Sequence

from quizroster.logger import get_logger

_logger = get_logger("services.notifications")


@dataclass(frozen=True)
class AssignedQuiz:
    quiz_instance_id: str
    quiz_title: Optional[str] = None


class Notifier(Protocol):
    async def send_invite(
        self, *, email: str, token: str, group_name: str, expires_at: datetime
    ) -> None: ...

    async def send_assignment_notice(
        self, *, email: str, group_name: str, assignments: Sequence[AssignedQuiz]
    ) -> None: ...


class LogNotifier:
    """Email sink stand-in: records what would be sent, never the token."""

    async def send_invite(
        self, *, email: str, token: str, group_name: str, expires_at: datetime
    ) -> None:
        del token
        _logger.info(
            "notify.invite",
            "Queued group invite email",
            email=email,
            group_name=group_name,
            expires_at=expires_at.isoformat(),
        )

    async def send_assignment_notice(
        self, *, email: str, group_name: str, assignments: Sequence[AssignedQuiz]
    ) -> None:
        _logger.info(
            "notify.assignments",
            "Queued assignment notice email",
            email=email,
            group_name=group_name,
            quiz_instance_ids=[item.quiz_instance_id for item in assignments],
            quiz_titles=[item.quiz_title for item in assignments if item.quiz_title],
        )


async def deliver_invite(
    notifier: Notifier, *, email: str, token: str, group_name: str, expires_at: datetime
) -> None:
    try:
        await notifier.send_invite(
            email=email, token=token, group_name=group_name, expires_at=expires_at
        )
    except Exception as exc:  # noqa: BLE001
        _logger.warning(
            "notify.invite_failed",
            "Invite email delivery failed",
            email=email,
            error_type=type(exc).__name__,
            error=str(exc),
        )


async def deliver_assignment_notice(
    notifier: Notifier, *, email: str, group_name: str, assignments: Sequence[AssignedQuiz]
) -> None:
    if not assignments:
        return
    try:
        await notifier.send_assignment_notice(
            email=email, group_name=group_name, assignments=assignments
        )
    except Exception as exc:  # noqa: BLE001
        _logger.warning(
            "notify.assignments_failed",
            "Assignment notice delivery failed",
            email=email,
            error_type=type(exc).__name__,
            error=str(exc),
        )
