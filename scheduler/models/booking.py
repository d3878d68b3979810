"""Booking model definitions."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from scheduler.database import Base

BOOKING_CONFIRMED = "confirmed"
BOOKING_COMPLETED = "completed"


class Booking(Base):
    """A student's claim on an availability slot."""
    __tablename__ = "session_bookings"
    __table_args__ = (
        UniqueConstraint("availability_id", "student_id", name="uq_booking_availability_student"),
    )

    id = Column(Integer, primary_key=True)
    availability_id = Column(Integer, ForeignKey("instructor_availabilities.id"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    track_id = Column(Integer, ForeignKey("tracks.id"), nullable=False, index=True)
    session_id = Column(Integer, ForeignKey("live_sessions.id"), index=True)
    status = Column(String, default=BOOKING_CONFIRMED, nullable=False)
    student_notes = Column(Text)
    instructor_notes = Column(Text)
    feedback_given_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    availability = relationship("AvailabilitySlot", back_populates="bookings")
