"""initial schema

Revision ID: 0001_init
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("role", sa.String(length=16), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "groups",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("term", sa.String(length=64), nullable=True),
        sa.Column("mentor_id", sa.String(length=64), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index("ix_groups_mentor_id", "groups", ["mentor_id"])

    op.create_table(
        "group_students",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("group_id", sa.String(length=64), sa.ForeignKey("groups.id"), nullable=False),
        sa.Column("student_id", sa.String(length=64), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("group_id", "student_id", name="uq_group_students_group_student"),
    )
    op.create_index("ix_group_students_student_id", "group_students", ["student_id"])

    op.create_table(
        "pending_invites",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("group_id", sa.String(length=64), sa.ForeignKey("groups.id"), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("token_hash", sa.String(length=128), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("invited_by", sa.String(length=64), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("accepted_by", sa.String(length=64), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("group_id", "email", name="uq_pending_invites_group_email"),
    )
    op.create_index("ix_pending_invites_email", "pending_invites", ["email"])
    op.create_index("ix_pending_invites_token_hash", "pending_invites", ["token_hash"], unique=True)

    op.create_table(
        "group_join_sessions",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("group_id", sa.String(length=64), sa.ForeignKey("groups.id"), nullable=False),
        sa.Column("mentor_id", sa.String(length=64), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("token", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("consumed_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_consumed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_group_join_sessions_token", "group_join_sessions", ["token"], unique=True)
    op.create_index(
        "ix_group_join_sessions_group_mentor", "group_join_sessions", ["group_id", "mentor_id"]
    )
    op.create_index(
        "uq_group_join_sessions_active",
        "group_join_sessions",
        ["group_id", "mentor_id"],
        unique=True,
        sqlite_where=sa.text("status = 'active'"),
        postgresql_where=sa.text("status = 'active'"),
    )

    op.create_table(
        "quizzes",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("mentor_id", sa.String(length=64), sa.ForeignKey("users.id"), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_quizzes_mentor_id", "quizzes", ["mentor_id"])

    op.create_table(
        "quiz_instances",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("quiz_id", sa.String(length=64), sa.ForeignKey("quizzes.id"), nullable=False),
        sa.Column("group_id", sa.String(length=64), sa.ForeignKey("groups.id"), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_seconds", sa.Integer(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_quiz_instances_group_status", "quiz_instances", ["group_id", "status"])

    op.create_table(
        "quiz_assignments",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column(
            "quiz_instance_id",
            sa.String(length=64),
            sa.ForeignKey("quiz_instances.id"),
            nullable=False,
        ),
        sa.Column("student_id", sa.String(length=64), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("assignment_source", sa.String(length=32), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint(
            "quiz_instance_id", "student_id", name="uq_quiz_assignments_instance_student"
        ),
    )
    op.create_index("ix_quiz_assignments_student_id", "quiz_assignments", ["student_id"])

    op.create_table(
        "telemetry_events",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("actor_id", sa.String(length=64), nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("fields", sa.JSON(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_telemetry_events_actor_id", "telemetry_events", ["actor_id"])
    op.create_index("ix_telemetry_events_event_type", "telemetry_events", ["event_type"])
    op.create_index("ix_telemetry_events_created_at", "telemetry_events", ["created_at"])


def downgrade() -> None:
    op.drop_table("telemetry_events")
    op.drop_table("quiz_assignments")
    op.drop_table("quiz_instances")
    op.drop_table("quizzes")
    op.drop_table("group_join_sessions")
    op.drop_table("pending_invites")
    op.drop_table("group_students")
    op.drop_table("groups")
    op.drop_table("users")
