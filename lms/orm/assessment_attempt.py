"""
AssessmentAttempt and AttemptAnswer models.

Attempt lifecycle (one-directional):
    in_progress → submitted → graded → completed

Scores are fixed-point decimals; percentage and passed stay NULL
until the attempt is first aggregated.
"""
import enum
from datetime import datetime

from sqlalchemy import Column, Integer, Text, String, Boolean, DateTime, ForeignKey, Enum, UniqueConstraint, Index
from sqlalchemy.orm import relationship

from lms.core.db_types import QuantizedDecimal
from lms.orm.base import BaseModel


class AttemptStatus(str, enum.Enum):
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    GRADED = "graded"
    COMPLETED = "completed"


# Attempts in these states use up one of the assessment's allowed attempts.
COUNTED_ATTEMPT_STATUSES = (
    AttemptStatus.SUBMITTED,
    AttemptStatus.GRADED,
    AttemptStatus.COMPLETED,
)


class AssessmentAttempt(BaseModel):
    __tablename__ = "assessment_attempts"

    assessment_id = Column(Integer, ForeignKey("assessments.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    attempt_number = Column(Integer, nullable=False, comment="1-based, per (user, assessment)")
    status = Column(Enum(AttemptStatus), default=AttemptStatus.IN_PROGRESS, nullable=False, index=True)

    score = Column(QuantizedDecimal(10, 2), nullable=True)
    max_score = Column(QuantizedDecimal(10, 2), nullable=True)
    percentage = Column(QuantizedDecimal(5, 2), nullable=True)
    passed = Column(Boolean, nullable=True)

    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    submitted_at = Column(DateTime, nullable=True)
    graded_at = Column(DateTime, nullable=True, comment="Set once, on the first move to graded")
    completed_at = Column(DateTime, nullable=True)
    graded_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    assessment = relationship("Assessment", back_populates="attempts")
    user = relationship("User", back_populates="attempts", foreign_keys=[user_id])
    answers = relationship(
        "AttemptAnswer",
        back_populates="attempt",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint("user_id", "assessment_id", "attempt_number", name="uq_attempt_user_assessment_number"),
        Index("ix_attempts_user_assessment_status", "user_id", "assessment_id", "status"),
    )

    def __repr__(self):
        return (
            f"<AssessmentAttempt(id={self.id}, assessment_id={self.assessment_id}, "
            f"user_id={self.user_id}, number={self.attempt_number}, status={self.status})>"
        )


class AttemptAnswer(BaseModel):
    """
    One submitted answer. Unanswered questions have no row.
    
    score is NULL until graded (automatically or by a human).
    """
    __tablename__ = "attempt_answers"

    attempt_id = Column(Integer, ForeignKey("assessment_attempts.id", ondelete="CASCADE"), nullable=False, index=True)
    question_id = Column(Integer, ForeignKey("questions.id", ondelete="CASCADE"), nullable=False, index=True)
    answer_text = Column(Text, nullable=True)
    file_path = Column(String(500), nullable=True, comment="Storage reference for file_upload answers")
    is_correct = Column(Boolean, nullable=True)
    score = Column(QuantizedDecimal(10, 2), nullable=True)
    feedback = Column(Text, nullable=True)
    graded_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    graded_at = Column(DateTime, nullable=True)

    attempt = relationship("AssessmentAttempt", back_populates="answers")
    question = relationship("Question")

    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_answer_attempt_question"),
    )

    @property
    def is_graded(self) -> bool:
        return self.score is not None

    def __repr__(self):
        return f"<AttemptAnswer(id={self.id}, attempt_id={self.attempt_id}, question_id={self.question_id})>"
