"""
Enrollment model.

Status transitions are enforced by lms.state_machines.enrollment_state;
this model only stores the current state and its timestamps.
"""
import enum
from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum, Index
from sqlalchemy.orm import relationship

from lms.core.db_types import QuantizedDecimal
from lms.orm.base import BaseModel


class EnrollmentStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    DROPPED = "dropped"


class Enrollment(BaseModel):
    __tablename__ = "enrollments"

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    course_id = Column(Integer, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(Enum(EnrollmentStatus), default=EnrollmentStatus.ACTIVE, nullable=False, index=True)
    progress_percentage = Column(
        QuantizedDecimal(5, 1),
        default=0,
        nullable=False,
        comment="0.0 - 100.0, one decimal"
    )

    enrolled_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    started_at = Column(DateTime, nullable=True, comment="First recorded lesson progress")
    completed_at = Column(DateTime, nullable=True)
    dropped_at = Column(DateTime, nullable=True)
    drop_reason = Column(String(500), nullable=True)

    invited_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    last_lesson_id = Column(Integer, ForeignKey("lessons.id", ondelete="SET NULL"), nullable=True)

    user = relationship("User", back_populates="enrollments", foreign_keys=[user_id])
    course = relationship("Course", back_populates="enrollments")
    lesson_progress = relationship(
        "LessonProgress",
        back_populates="enrollment",
        cascade="all, delete-orphan",
    )

    # Not unique: history rows may exist, the service guards against a
    # second active or completed enrollment.
    __table_args__ = (
        Index("ix_enrollments_user_course", "user_id", "course_id"),
    )

    def __repr__(self):
        return (
            f"<Enrollment(id={self.id}, user_id={self.user_id}, course_id={self.course_id}, "
            f"status={self.status}, progress={self.progress_percentage})>"
        )
