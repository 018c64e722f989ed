from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from quizroster import metrics
from quizroster.config import get_settings
from quizroster.errors import Expired, Inactive, NotFound
from quizroster.logger import get_logger
from quizroster.models.invite import (
    INVITE_ACCEPTED,
    INVITE_EXPIRED,
    INVITE_PENDING,
    PendingInvite,
)
from quizroster.services.telemetry import GROUP_INVITE_CREATED, record_event
from quizroster.store import upsert_rows
from quizroster.utils import generate_token, hash_secret, is_expired, normalize_email, utcnow

_logger = get_logger("services.invites")

# 32 random bytes -> 256 bits; only the SHA-256 digest is stored.
INVITE_TOKEN_BYTES = 32


@dataclass(frozen=True)
class IssuedInvite:
    invite: PendingInvite
    token: str


def invite_ttl() -> timedelta:
    return timedelta(days=get_settings().invite_ttl_days)


async def _get_by_token(session: AsyncSession, token: str) -> Optional[PendingInvite]:
    result = await session.execute(
        select(PendingInvite)
        .where(PendingInvite.token_hash == hash_secret(token))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def upsert_pending_invite(
    session: AsyncSession,
    *,
    group_id: str,
    email: str,
    mentor_id: str,
    now: Optional[datetime] = None,
) -> IssuedInvite:
    """Issue (or re-issue) the invite for ``(group_id, email)``.

    Every call rotates the token and refreshes the expiry. Callers that must
    not leak a fresh token on a repeated click check ``find_pending_invite``
    first.
    """
    current = now or utcnow()
    normalized = normalize_email(email)
    raw_token = generate_token(INVITE_TOKEN_BYTES)
    expires_at = current + invite_ttl()
    written = await upsert_rows(
        session,
        PendingInvite.__table__,
        [
            {
                "id": str(uuid4()),
                "group_id": group_id,
                "email": normalized,
                "token_hash": hash_secret(raw_token),
                "status": INVITE_PENDING,
                "invited_by": mentor_id,
                "expires_at": expires_at,
                "accepted_at": None,
                "accepted_by": None,
                "created_at": current,
                "updated_at": current,
            }
        ],
        conflict_columns=("group_id", "email"),
        on_conflict="merge",
        update_columns=(
            "token_hash",
            "status",
            "invited_by",
            "expires_at",
            "accepted_at",
            "accepted_by",
            "updated_at",
        ),
    )
    invite = await session.get(PendingInvite, written[0]["id"], populate_existing=True)
    if invite is None:
        raise NotFound("Invite could not be loaded after upsert")
    await record_event(
        session,
        mentor_id,
        GROUP_INVITE_CREATED,
        {"group_id": group_id, "email": normalized, "expires_at": expires_at.isoformat()},
    )
    _logger.info(
        "invite.issue",
        "Issued pending invite",
        group_id=group_id,
        email=normalized,
        invite_id=invite.id,
    )
    return IssuedInvite(invite=invite, token=raw_token)


async def find_pending_invite(
    session: AsyncSession,
    *,
    group_id: str,
    email: str,
    now: Optional[datetime] = None,
) -> Optional[PendingInvite]:
    current = now or utcnow()
    result = await session.execute(
        select(PendingInvite)
        .where(
            PendingInvite.group_id == group_id,
            PendingInvite.email == normalize_email(email),
            PendingInvite.status == INVITE_PENDING,
        )
        .execution_options(populate_existing=True)
    )
    invite = result.scalar_one_or_none()
    if invite is None:
        return None
    if is_expired(invite.expires_at, current):
        invite.status = INVITE_EXPIRED
        await session.flush()
        _logger.info("invite.expire", "Expired stale pending invite", invite_id=invite.id)
        return None
    return invite


async def _check_usable(session: AsyncSession, token: str, now: datetime) -> PendingInvite:
    invite = await _get_by_token(session, token)
    if invite is None:
        metrics.record_redemption(kind="invite", result="not_found")
        raise NotFound("Invite not found or already used")
    if invite.status != INVITE_PENDING:
        metrics.record_redemption(kind="invite", result="inactive")
        raise Inactive("Invite is not active")
    if is_expired(invite.expires_at, now):
        invite.status = INVITE_EXPIRED
        await session.commit()
        _logger.warning("invite.redeem.expired", "Invite has expired", invite_id=invite.id)
        metrics.record_redemption(kind="invite", result="expired")
        raise Expired("Invite has expired")
    return invite


async def verify(
    session: AsyncSession,
    token: str,
    *,
    now: Optional[datetime] = None,
) -> PendingInvite:
    return await _check_usable(session, token, now or utcnow())


async def redeem(
    session: AsyncSession,
    token: str,
    *,
    accepted_by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> PendingInvite:
    current = now or utcnow()
    invite = await _check_usable(session, token, current)
    invite.status = INVITE_ACCEPTED
    invite.accepted_at = current
    invite.accepted_by = accepted_by
    await session.flush()
    metrics.record_redemption(kind="invite", result="ok")
    _logger.info(
        "invite.redeem",
        "Accepted invite",
        invite_id=invite.id,
        group_id=invite.group_id,
    )
    return invite
