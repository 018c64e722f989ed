from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from quizroster import metrics
from quizroster.config import get_settings
from quizroster.errors import Expired, Gone, NotFound
from quizroster.logger import get_logger, token_hint
from quizroster.models.join_session import (
    SESSION_ACTIVE,
    SESSION_EXPIRED,
    SESSION_REVOKED,
    GroupJoinSession,
)
from quizroster.services.telemetry import GROUP_QR_SESSION_REVOKED, record_event
from quizroster.store import upsert_rows
from quizroster.utils import generate_token, is_expired, seconds_remaining, utcnow

_logger = get_logger("services.join_sessions")

# 16 random bytes -> 128 bits of entropy, 32 hex chars in the QR payload.
JOIN_TOKEN_BYTES = 16


@dataclass(frozen=True)
class JoinRedemption:
    session_id: str
    group_id: str
    mentor_id: str
    consumed_count: int


def session_ttl() -> timedelta:
    return timedelta(minutes=get_settings().join_session_ttl_minutes)


async def _expire_stale_sessions(
    session: AsyncSession, group_id: str, mentor_id: str, now: datetime
) -> int:
    result = await session.execute(
        update(GroupJoinSession)
        .where(
            GroupJoinSession.group_id == group_id,
            GroupJoinSession.mentor_id == mentor_id,
            GroupJoinSession.status == SESSION_ACTIVE,
            GroupJoinSession.expires_at <= now,
        )
        .values(status=SESSION_EXPIRED)
        .execution_options(synchronize_session=False)
    )
    expired = int(result.rowcount or 0)
    if expired:
        _logger.info(
            "join_session.expire",
            "Expired stale join sessions",
            group_id=group_id,
            mentor_id=mentor_id,
            count=expired,
        )
    return expired


async def _find_active(
    session: AsyncSession, group_id: str, mentor_id: str, now: datetime
) -> Optional[GroupJoinSession]:
    result = await session.execute(
        select(GroupJoinSession)
        .where(
            GroupJoinSession.group_id == group_id,
            GroupJoinSession.mentor_id == mentor_id,
            GroupJoinSession.status == SESSION_ACTIVE,
        )
        .order_by(GroupJoinSession.created_at.desc())
        .limit(1)
        .execution_options(populate_existing=True)
    )
    row = result.scalar_one_or_none()
    if row is None:
        return None
    # Clock skew between the store and this process: trust our own clock.
    if is_expired(row.expires_at, now):
        row.status = SESSION_EXPIRED
        await session.flush()
        return None
    return row


async def get_active(
    session: AsyncSession,
    group_id: str,
    mentor_id: str,
    *,
    now: Optional[datetime] = None,
) -> Optional[GroupJoinSession]:
    current = now or utcnow()
    await _expire_stale_sessions(session, group_id, mentor_id, current)
    active = await _find_active(session, group_id, mentor_id, current)
    await session.commit()
    return active


async def get_or_create_active(
    session: AsyncSession,
    group_id: str,
    mentor_id: str,
    *,
    now: Optional[datetime] = None,
) -> tuple[GroupJoinSession, bool]:
    """Return the pair's active session, minting one only if none qualifies.

    The boolean is true when a new session was created. The partial unique
    index on active sessions is the conflict target, so a concurrent request
    that loses the insert race gets the winner's row instead of a duplicate.
    """
    current = now or utcnow()
    async with _logger.operation(
        "join_session.open",
        "Opening QR join session",
        group_id=group_id,
        mentor_id=mentor_id,
    ) as op:
        await _expire_stale_sessions(session, group_id, mentor_id, current)
        active = await _find_active(session, group_id, mentor_id, current)
        if active is not None:
            await session.commit()
            op.step("session.reuse", "Returning existing active session", session_id=active.id)
            return active, False

        session_id = str(uuid4())
        inserted = await upsert_rows(
            session,
            GroupJoinSession.__table__,
            [
                {
                    "id": session_id,
                    "group_id": group_id,
                    "mentor_id": mentor_id,
                    "token": generate_token(JOIN_TOKEN_BYTES),
                    "status": SESSION_ACTIVE,
                    "expires_at": current + session_ttl(),
                    "consumed_count": 0,
                    "created_at": current,
                    "updated_at": current,
                }
            ],
            conflict_columns=("group_id", "mentor_id"),
            index_where=GroupJoinSession.status == SESSION_ACTIVE,
            on_conflict="none",
        )
        created = bool(inserted)
        if not created:
            op.step_warning("session.race", "Lost insert race, loading concurrent session")
        winner = await _find_active(session, group_id, mentor_id, current)
        await session.commit()
        if winner is None:
            raise NotFound("QR session could not be opened")
        op.step(
            "session.create" if created else "session.reuse",
            "Minted join session" if created else "Returning concurrent session",
            session_id=winner.id,
        )
        return winner, created


async def redeem(
    session: AsyncSession,
    token: str,
    *,
    now: Optional[datetime] = None,
) -> JoinRedemption:
    current = now or utcnow()
    result = await session.execute(
        select(GroupJoinSession)
        .where(GroupJoinSession.token == token)
        .execution_options(populate_existing=True)
    )
    join_session = result.scalar_one_or_none()
    if join_session is None:
        _logger.warning(
            "join_session.redeem.missing",
            "QR session not found",
            token_hint=token_hint(token),
        )
        metrics.record_redemption(kind="qr", result="not_found")
        raise NotFound("QR session not found")

    if join_session.status != SESSION_ACTIVE:
        _logger.warning(
            "join_session.redeem.inactive",
            "QR session is no longer active",
            session_id=join_session.id,
            status=join_session.status,
        )
        metrics.record_redemption(kind="qr", result="gone")
        raise Gone("QR code session has ended")

    if is_expired(join_session.expires_at, current):
        join_session.status = SESSION_EXPIRED
        await session.commit()
        _logger.warning(
            "join_session.redeem.expired",
            "QR session expired during request",
            session_id=join_session.id,
            expires_at=join_session.expires_at.isoformat(),
        )
        metrics.record_redemption(kind="qr", result="expired")
        raise Expired("QR code session has expired")

    metrics.record_redemption(kind="qr", result="ok")
    return JoinRedemption(
        session_id=join_session.id,
        group_id=join_session.group_id,
        mentor_id=join_session.mentor_id,
        consumed_count=join_session.consumed_count or 0,
    )


async def record_consumption(
    session: AsyncSession,
    session_id: str,
    *,
    created: bool,
    now: Optional[datetime] = None,
) -> None:
    values: Dict[str, Any] = {"last_consumed_at": now or utcnow()}
    if created:
        values["consumed_count"] = GroupJoinSession.consumed_count + 1
    await session.execute(
        update(GroupJoinSession)
        .where(GroupJoinSession.id == session_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )


async def revoke(
    session: AsyncSession,
    session_id: str,
    *,
    group_id: str,
    mentor_id: str,
) -> GroupJoinSession:
    result = await session.execute(
        select(GroupJoinSession).where(
            GroupJoinSession.id == session_id,
            GroupJoinSession.group_id == group_id,
        )
    )
    join_session = result.scalar_one_or_none()
    if join_session is None:
        raise NotFound("QR session not found")
    if join_session.status == SESSION_REVOKED:
        return join_session

    previous_status = join_session.status
    join_session.status = SESSION_REVOKED
    await record_event(
        session,
        mentor_id,
        GROUP_QR_SESSION_REVOKED,
        {"group_id": group_id, "session_id": session_id, "previous_status": previous_status},
    )
    await session.commit()
    _logger.info(
        "join_session.revoke",
        "Revoked QR join session",
        session_id=session_id,
        group_id=group_id,
        previous_status=previous_status,
    )
    return join_session


def build_join_url(base_url: str, token: str) -> str:
    return f"{base_url.rstrip('/')}/join/{token}"


def session_view(
    join_session: GroupJoinSession,
    *,
    base_url: str,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    current = now or utcnow()
    return {
        "id": join_session.id,
        "token": join_session.token,
        "status": join_session.status,
        "created_at": join_session.created_at,
        "expires_at": join_session.expires_at,
        "consumed_count": join_session.consumed_count or 0,
        "last_consumed_at": join_session.last_consumed_at,
        "ttl_seconds": seconds_remaining(join_session.expires_at, current),
        "join_url": build_join_url(base_url, join_session.token),
    }
