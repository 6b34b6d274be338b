"""
lms/orm/base.py
Declarative base and shared column mixins for all LMS tables
"""
from datetime import datetime
from sqlalchemy import Column, Integer, DateTime
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class BaseModel(Base):
    """
    Abstract base model with common fields.
    All ORM models inherit from this.
    """
    __abstract__ = True
    
    id = Column(
        Integer,
        primary_key=True,
        autoincrement=True,
        index=True
    )
    
    created_at = Column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
        comment="Timestamp when record was created"
    )
    
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
        comment="Timestamp when record was last updated"
    )

    def __repr__(self):
        return f"<{type(self).__name__}(id={self.id})>"


class SoftDeleteMixin:
    """
    Rows are hidden rather than removed.

    Deleted lessons keep their LessonProgress history but no longer
    count toward course progress.
    """

    deleted_at = Column(
        DateTime,
        nullable=True,
        index=True,
        comment="Set when the row was soft-deleted"
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def soft_delete(self) -> None:
        self.deleted_at = datetime.utcnow()
