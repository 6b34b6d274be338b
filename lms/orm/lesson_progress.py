"""
LessonProgress model.
One row per (enrollment, lesson) holding page, media and time tracking.
"""
from datetime import datetime

from sqlalchemy import Column, Integer, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from lms.core.db_types import QuantizedDecimal, UniversalJSON
from lms.orm.base import BaseModel


class LessonProgress(BaseModel):
    __tablename__ = "lesson_progress"

    enrollment_id = Column(Integer, ForeignKey("enrollments.id", ondelete="CASCADE"), nullable=False, index=True)
    lesson_id = Column(Integer, ForeignKey("lessons.id", ondelete="CASCADE"), nullable=False, index=True)

    # Paged content
    current_page = Column(Integer, nullable=True)
    total_pages = Column(Integer, nullable=True)
    highest_page_reached = Column(Integer, default=0, nullable=False, comment="Never decreases")

    # Media content
    media_position_seconds = Column(Integer, nullable=True)
    media_duration_seconds = Column(Integer, nullable=True)
    media_progress_percentage = Column(QuantizedDecimal(5, 2), nullable=True)

    time_spent_seconds = Column(Integer, default=0, nullable=False)
    is_completed = Column(Boolean, default=False, nullable=False, index=True)
    completed_at = Column(DateTime, nullable=True)
    last_viewed_at = Column(DateTime, default=datetime.utcnow, nullable=True)
    pagination_metadata = Column(UniversalJSON, nullable=True)

    enrollment = relationship("Enrollment", back_populates="lesson_progress")
    lesson = relationship("Lesson")

    __table_args__ = (
        UniqueConstraint("enrollment_id", "lesson_id", name="uq_lesson_progress_enrollment_lesson"),
    )

    def __repr__(self):
        return (
            f"<LessonProgress(enrollment_id={self.enrollment_id}, lesson_id={self.lesson_id}, "
            f"completed={self.is_completed})>"
        )
