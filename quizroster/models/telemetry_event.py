from __future__ import annotations

from typing import Any, Dict

from sqlalchemy import JSON, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from quizroster.models.base import Base, TimestampMixin


class TelemetryEvent(TimestampMixin, Base):
    __tablename__ = "telemetry_events"
    __table_args__ = (Index("ix_telemetry_events_created_at", "created_at"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    actor_id: Mapped[str] = mapped_column(String(64), index=True)
    event_type: Mapped[str] = mapped_column(String(64), index=True)
    fields: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
