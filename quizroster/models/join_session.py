from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from quizroster.models.base import Base, TimestampMixin

SESSION_ACTIVE = "active"
SESSION_EXPIRED = "expired"
SESSION_REVOKED = "revoked"

_ACTIVE_ONLY = text("status = 'active'")


class GroupJoinSession(TimestampMixin, Base):
    __tablename__ = "group_join_sessions"
    __table_args__ = (
        # At most one active QR session per (group, mentor).
        Index(
            "uq_group_join_sessions_active",
            "group_id",
            "mentor_id",
            unique=True,
            sqlite_where=_ACTIVE_ONLY,
            postgresql_where=_ACTIVE_ONLY,
        ),
        Index("ix_group_join_sessions_group_mentor", "group_id", "mentor_id"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    group_id: Mapped[str] = mapped_column(String(64), ForeignKey("groups.id"))
    mentor_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id"))
    token: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    status: Mapped[str] = mapped_column(String(16), default=SESSION_ACTIVE)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    consumed_count: Mapped[int] = mapped_column(Integer, default=0, server_default=text("0"))
    last_consumed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
