"""User model definitions."""

from sqlalchemy import Column, ForeignKey, Integer, String
from scheduler.database import Base

ROLE_STUDENT = "student"
ROLE_INSTRUCTOR = "instructor"
ROLE_COORDINATOR = "coordinator"
ROLE_MANAGER = "manager"
ROLE_CEO = "ceo"

ADMIN_ROLES = {ROLE_MANAGER, ROLE_CEO}
STAFF_ROLES = {ROLE_INSTRUCTOR, ROLE_COORDINATOR, ROLE_MANAGER, ROLE_CEO}


class User(Base):
    """Represents an application user."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    name = Column(String)
    hashed_password = Column(String)
    role = Column(String, default=ROLE_STUDENT, index=True)  # student/instructor/coordinator/manager/ceo
    grade_id = Column(Integer, ForeignKey("grades.id"), index=True)
