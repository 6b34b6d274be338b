"""
User model.
Identity is owned elsewhere; only the fields the LMS core reads are kept.
"""
import enum

from sqlalchemy import Column, String, Enum
from sqlalchemy.orm import relationship

from lms.orm.base import BaseModel


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    INSTRUCTOR = "instructor"
    LEARNER = "learner"


class User(BaseModel):
    __tablename__ = "users"

    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(255), nullable=False)
    role = Column(Enum(UserRole), default=UserRole.LEARNER, nullable=False, index=True)

    enrollments = relationship("Enrollment", back_populates="user", foreign_keys="Enrollment.user_id")
    attempts = relationship("AssessmentAttempt", back_populates="user", foreign_keys="AssessmentAttempt.user_id")

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"
