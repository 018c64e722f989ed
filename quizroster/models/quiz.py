from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from quizroster.models.base import Base, TimestampMixin

INSTANCE_STATUSES = ("draft", "scheduled", "active", "closed")
LIVE_INSTANCE_STATUSES = ("draft", "scheduled", "active")

ASSIGNMENT_ASSIGNED = "assigned"

SOURCE_MENTOR_ADD = "mentor_add"
SOURCE_QR_JOIN = "qr_join"
SOURCE_QUIZ_CREATION = "quiz_creation"
ASSIGNMENT_SOURCES = (SOURCE_MENTOR_ADD, SOURCE_QR_JOIN, SOURCE_QUIZ_CREATION)


class Quiz(TimestampMixin, Base):
    __tablename__ = "quizzes"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(255))
    mentor_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id"), index=True)


class QuizInstance(TimestampMixin, Base):
    __tablename__ = "quiz_instances"
    __table_args__ = (Index("ix_quiz_instances_group_status", "group_id", "status"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    quiz_id: Mapped[str] = mapped_column(String(64), ForeignKey("quizzes.id"))
    group_id: Mapped[str] = mapped_column(String(64), ForeignKey("groups.id"))
    status: Mapped[str] = mapped_column(String(16), default="scheduled")
    scheduled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_seconds: Mapped[int] = mapped_column(Integer, default=300)


class QuizAssignment(TimestampMixin, Base):
    __tablename__ = "quiz_assignments"
    __table_args__ = (
        UniqueConstraint(
            "quiz_instance_id", "student_id", name="uq_quiz_assignments_instance_student"
        ),
        Index("ix_quiz_assignments_student_id", "student_id"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    quiz_instance_id: Mapped[str] = mapped_column(String(64), ForeignKey("quiz_instances.id"))
    student_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id"))
    status: Mapped[str] = mapped_column(String(16), default=ASSIGNMENT_ASSIGNED)
    assignment_source: Mapped[str] = mapped_column(String(32))
