"""
Assessment, Question and QuestionOption models.

Question types:
- multiple_choice, true_false, matching, short_answer: graded automatically
- essay, file_upload: wait for a human grade
"""
import enum

from sqlalchemy import Column, Integer, String, Text, Boolean, ForeignKey, Enum, CheckConstraint, Index
from sqlalchemy.orm import relationship

from lms.orm.base import BaseModel


class AssessmentStatus(str, enum.Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class QuestionType(str, enum.Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    MATCHING = "matching"
    SHORT_ANSWER = "short_answer"
    ESSAY = "essay"
    FILE_UPLOAD = "file_upload"

    @property
    def is_auto_gradable(self) -> bool:
        return self in AUTO_GRADABLE_TYPES

    @property
    def requires_options(self) -> bool:
        return self in OPTION_BASED_TYPES


AUTO_GRADABLE_TYPES = frozenset({
    QuestionType.MULTIPLE_CHOICE,
    QuestionType.TRUE_FALSE,
    QuestionType.MATCHING,
    QuestionType.SHORT_ANSWER,
})

OPTION_BASED_TYPES = frozenset({
    QuestionType.MULTIPLE_CHOICE,
    QuestionType.TRUE_FALSE,
    QuestionType.MATCHING,
})


class Assessment(BaseModel):
    """
    Quiz or exam attached to a course.
    
    max_attempts = 0 means unlimited attempts.
    Only published assessments can be attempted; only required,
    non-draft assessments count toward assessment-inclusive progress.
    """
    __tablename__ = "assessments"

    course_id = Column(Integer, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    passing_score = Column(Integer, default=70, nullable=False, comment="Percentage 0-100")
    max_attempts = Column(Integer, default=3, nullable=False, comment="0 = unlimited")
    is_required = Column(Boolean, default=False, nullable=False)
    status = Column(Enum(AssessmentStatus), default=AssessmentStatus.DRAFT, nullable=False, index=True)

    course = relationship("Course", back_populates="assessments")
    questions = relationship(
        "Question",
        back_populates="assessment",
        cascade="all, delete-orphan",
        order_by="Question.position",
        lazy="selectin",
    )
    attempts = relationship("AssessmentAttempt", back_populates="assessment", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("passing_score >= 0 AND passing_score <= 100", name="ck_assessments_passing_score"),
        CheckConstraint("max_attempts >= 0", name="ck_assessments_max_attempts"),
    )

    @property
    def is_published(self) -> bool:
        return self.status == AssessmentStatus.PUBLISHED

    @property
    def has_attempt_limit(self) -> bool:
        return (self.max_attempts or 0) > 0

    def __repr__(self):
        return f"<Assessment(id={self.id}, course_id={self.course_id}, status={self.status})>"


class Question(BaseModel):
    __tablename__ = "questions"

    assessment_id = Column(Integer, ForeignKey("assessments.id", ondelete="CASCADE"), nullable=False, index=True)
    question_type = Column(Enum(QuestionType), nullable=False)
    question_text = Column(Text, nullable=False)
    points = Column(Integer, default=1, nullable=False)
    correct_answer = Column(
        Text,
        nullable=True,
        comment="Comma-separated accepted answers (short_answer) or truth value (true_false)"
    )
    position = Column(Integer, default=0, nullable=False)

    assessment = relationship("Assessment", back_populates="questions")
    options = relationship(
        "QuestionOption",
        back_populates="question",
        cascade="all, delete-orphan",
        order_by="QuestionOption.position",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint("points > 0", name="ck_questions_points_positive"),
        Index("ix_questions_assessment_position", "assessment_id", "position"),
    )

    @property
    def is_auto_gradable(self) -> bool:
        return QuestionType(self.question_type).is_auto_gradable

    @property
    def correct_options(self):
        return [option for option in self.options if option.is_correct]

    def __repr__(self):
        return f"<Question(id={self.id}, type={self.question_type}, points={self.points})>"


class QuestionOption(BaseModel):
    __tablename__ = "question_options"

    question_id = Column(Integer, ForeignKey("questions.id", ondelete="CASCADE"), nullable=False, index=True)
    option_text = Column(Text, nullable=False)
    is_correct = Column(Boolean, default=False, nullable=False)
    match_text = Column(Text, nullable=True, comment="Definition paired with this term (matching)")
    position = Column(Integer, default=0, nullable=False)

    question = relationship("Question", back_populates="options")

    def __repr__(self):
        return f"<QuestionOption(id={self.id}, question_id={self.question_id}, is_correct={self.is_correct})>"
