"""Availability model definitions."""

from datetime import datetime

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.orm import relationship
from scheduler.database import Base


class AvailabilitySlot(Base):
    """An instructor's bookable hour range on one day of a given week."""
    __tablename__ = "instructor_availabilities"
    __table_args__ = (
        UniqueConstraint(
            "instructor_id", "track_id", "week_start_date", "day_of_week", "start_hour",
            name="uq_availability_instructor_track_week_day_hour",
        ),
    )

    id = Column(Integer, primary_key=True)
    instructor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    track_id = Column(Integer, ForeignKey("tracks.id"), nullable=False, index=True)
    week_start_date = Column(Date, nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)  # 0=Sunday ... 6=Saturday
    start_hour = Column(Integer, nullable=False)
    end_hour = Column(Integer, nullable=False)
    is_booked = Column(Boolean, default=False, nullable=False)
    is_confirmed = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    bookings = relationship("Booking", back_populates="availability", order_by="Booking.id")
