from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, DateTime, Float, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ..database import Base


class HistoricalEvent(Base):
    __tablename__ = "historical_events"

    event_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    event_name: Mapped[str] = mapped_column(String(512), index=True, nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    start_date: Mapped[datetime] = mapped_column(DateTime, index=True, nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime, index=True, nullable=False)
    duration_minutes: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    # No foreign key: children may be ingested before their parent.
    parent_event_id: Mapped[Optional[str]] = mapped_column(String(255), index=True, nullable=True)
    # "metadata" is reserved on declarative classes.
    attributes: Mapped[Dict[str, Any]] = mapped_column("metadata", JSON, default=dict, nullable=False)

    def to_summary(self) -> Dict[str, object]:
        return {
            "event_id": self.event_id,
            "event_name": self.event_name,
            "start_date": self.start_date,
            "end_date": self.end_date,
        }

    def __repr__(self) -> str:
        return f"HistoricalEvent(event_id={self.event_id!r}, parent_event_id={self.parent_event_id!r})"
