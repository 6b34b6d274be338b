"""
CourseInvitation model.
Accepting a pending invitation creates (or reactivates) an enrollment.
"""
import enum

from sqlalchemy import Column, Integer, DateTime, ForeignKey, Enum, Index
from sqlalchemy.orm import relationship

from lms.orm.base import BaseModel


class InvitationStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"


class CourseInvitation(BaseModel):
    __tablename__ = "course_invitations"

    course_id = Column(Integer, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    invited_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    status = Column(Enum(InvitationStatus), default=InvitationStatus.PENDING, nullable=False)
    expires_at = Column(DateTime, nullable=True)
    responded_at = Column(DateTime, nullable=True)

    course = relationship("Course")

    __table_args__ = (
        Index("ix_course_invitations_user_status", "user_id", "status"),
    )

    def __repr__(self):
        return f"<CourseInvitation(id={self.id}, course_id={self.course_id}, status={self.status})>"
