"""Grade and track model definitions."""

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String
from scheduler.database import Base


class Grade(Base):
    """A cohort of students; every track belongs to one grade."""
    __tablename__ = "grades"

    id = Column(Integer, primary_key=True)
    name = Column(String, unique=True)
    is_active = Column(Boolean, default=True)


class Track(Base):
    """A teaching track taught by one instructor and overseen by one coordinator."""
    __tablename__ = "tracks"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    grade_id = Column(Integer, ForeignKey("grades.id"), nullable=False, index=True)
    instructor_id = Column(Integer, ForeignKey("users.id"), index=True)
    coordinator_id = Column(Integer, ForeignKey("users.id"), index=True)
    is_active = Column(Boolean, default=True)
