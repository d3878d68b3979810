"""Attendance model definitions."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from scheduler.database import Base

ATTENDANCE_PRESENT = "present"
ATTENDANCE_ABSENT = "absent"
ATTENDANCE_LATE = "late"
ATTENDANCE_EXCUSED = "excused"
ATTENDANCE_STATUSES = (ATTENDANCE_PRESENT, ATTENDANCE_ABSENT, ATTENDANCE_LATE, ATTENDANCE_EXCUSED)


class SessionAttendance(Base):
    """One student's attendance at one session."""
    __tablename__ = "session_attendances"
    __table_args__ = (
        UniqueConstraint("session_id", "student_id", name="uq_attendance_session_student"),
    )

    id = Column(Integer, primary_key=True)
    session_id = Column(Integer, ForeignKey("live_sessions.id"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String, default=ATTENDANCE_ABSENT, nullable=False, index=True)
    notes = Column(Text)
    marked_by = Column(Integer, ForeignKey("users.id"))
    marked_at = Column(DateTime, default=datetime.now)
