from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, UniqueConstraint, false
from sqlalchemy.orm import Mapped, mapped_column

from quizroster.models.base import Base, TimestampMixin

MEMBERSHIP_ACTIVE = "active"


class Group(TimestampMixin, Base):
    __tablename__ = "groups"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    term: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    mentor_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id"), index=True)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false())


class GroupStudent(TimestampMixin, Base):
    __tablename__ = "group_students"
    __table_args__ = (
        UniqueConstraint("group_id", "student_id", name="uq_group_students_group_student"),
        Index("ix_group_students_student_id", "student_id"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    group_id: Mapped[str] = mapped_column(String(64), ForeignKey("groups.id"))
    student_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id"))
    status: Mapped[str] = mapped_column(String(16), default=MEMBERSHIP_ACTIVE)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
