"""
Course and Lesson models.

A course is the unit of enrollment; its lessons (and, depending on the
progress strategy, its required assessments) determine completion.
"""
import enum

from sqlalchemy import Column, Integer, String, Text, ForeignKey, Enum, Index
from sqlalchemy.orm import relationship

from lms.orm.base import BaseModel, SoftDeleteMixin


class CourseStatus(str, enum.Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class CourseVisibility(str, enum.Enum):
    PUBLIC = "public"
    RESTRICTED = "restricted"
    HIDDEN = "hidden"


class ContentType(str, enum.Enum):
    TEXT = "text"
    VIDEO = "video"
    AUDIO = "audio"
    YOUTUBE = "youtube"
    DOCUMENT = "document"

    @property
    def is_media(self) -> bool:
        return self in (ContentType.VIDEO, ContentType.AUDIO, ContentType.YOUTUBE)


class Course(BaseModel):
    """
    Course offered to learners.
    
    progress_calculator_type overrides the configured progress strategy
    for this course only (lesson_based, assessment_inclusive, duration_weighted).
    """
    __tablename__ = "courses"

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(Enum(CourseStatus), default=CourseStatus.DRAFT, nullable=False, index=True)
    visibility = Column(Enum(CourseVisibility), default=CourseVisibility.PUBLIC, nullable=False)
    progress_calculator_type = Column(
        String(50),
        nullable=True,
        comment="Per-course progress strategy override"
    )
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    lessons = relationship(
        "Lesson",
        back_populates="course",
        cascade="all, delete-orphan",
        order_by="Lesson.position",
    )
    assessments = relationship("Assessment", back_populates="course", cascade="all, delete-orphan")
    enrollments = relationship("Enrollment", back_populates="course", cascade="all, delete-orphan")

    @property
    def is_published(self) -> bool:
        return self.status == CourseStatus.PUBLISHED

    def __repr__(self):
        return f"<Course(id={self.id}, title={self.title}, status={self.status})>"


class Lesson(SoftDeleteMixin, BaseModel):
    __tablename__ = "lessons"

    course_id = Column(Integer, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    content_type = Column(Enum(ContentType), default=ContentType.TEXT, nullable=False)
    position = Column(Integer, default=0, nullable=False)
    estimated_duration_minutes = Column(
        Integer,
        nullable=True,
        comment="Used as the weight by the duration_weighted strategy"
    )

    course = relationship("Course", back_populates="lessons")

    __table_args__ = (
        Index("ix_lessons_course_position", "course_id", "position"),
    )

    def __repr__(self):
        return f"<Lesson(id={self.id}, course_id={self.course_id}, position={self.position})>"
