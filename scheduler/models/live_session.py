"""Live session model definitions."""

import enum
from datetime import datetime

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, String, Text
from scheduler.database import Base


class SessionStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    SCHEDULED = "SCHEDULED"
    READY = "READY"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.CANCELLED)

    @property
    def is_live(self) -> bool:
        return self in (SessionStatus.ACTIVE, SessionStatus.PAUSED)


# Rows written before the status column was an uppercase enum.
LEGACY_STATUS_ALIASES = {
    "scheduled": SessionStatus.SCHEDULED,
    "in_progress": SessionStatus.ACTIVE,
    "paused": SessionStatus.PAUSED,
    "completed": SessionStatus.COMPLETED,
    "cancelled": SessionStatus.CANCELLED,
}


def normalize_status(value: str | SessionStatus | None) -> SessionStatus:
    if isinstance(value, SessionStatus):
        return value
    if value is None:
        return SessionStatus.DRAFT
    if value in LEGACY_STATUS_ALIASES:
        return LEGACY_STATUS_ALIASES[value]
    return SessionStatus(value.strip().upper())


class LiveSession(Base):
    """A concrete, schedulable teaching session."""
    __tablename__ = "live_sessions"

    id = Column(Integer, primary_key=True)
    title = Column(String, nullable=False)
    description = Column(Text)
    track_id = Column(Integer, ForeignKey("tracks.id"), nullable=False, index=True)
    instructor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    start_time = Column(String(5), nullable=False)  # HH:mm
    end_time = Column(String(5), nullable=False)  # HH:mm
    external_link = Column(String(500))
    link_added_at = Column(DateTime)
    status = Column(String, default=SessionStatus.DRAFT.value, nullable=False, index=True)
    materials = Column(Text)
    notes = Column(Text)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    @property
    def current_status(self) -> SessionStatus:
        return normalize_status(self.status)

    @property
    def has_schedule(self) -> bool:
        return bool(self.date and self.start_time)
