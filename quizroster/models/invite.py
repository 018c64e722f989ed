from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from quizroster.models.base import Base, TimestampMixin

INVITE_PENDING = "pending"
INVITE_EXPIRED = "expired"
INVITE_ACCEPTED = "accepted"


class PendingInvite(TimestampMixin, Base):
    __tablename__ = "pending_invites"
    __table_args__ = (UniqueConstraint("group_id", "email", name="uq_pending_invites_group_email"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    group_id: Mapped[str] = mapped_column(String(64), ForeignKey("groups.id"))
    email: Mapped[str] = mapped_column(String(320), index=True)
    token_hash: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    status: Mapped[str] = mapped_column(String(16), default=INVITE_PENDING)
    invited_by: Mapped[str] = mapped_column(String(64), ForeignKey("users.id"))
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    accepted_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
