"""
lms/services/enrollment_service.py
Enrollment commands: enroll, drop, re-enroll, complete, accept invitation

Rules:
- a user may hold only one active or completed enrollment per course
- only published courses accept new enrollments
- enrolling again after a drop reactivates the dropped enrollment
  (progress preserved) instead of creating a new row
- status changes go through EnrollmentStateMachine
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lms.core.transaction import committing
from lms.exceptions import (
    AlreadyEnrolledError,
    CourseNotPublishedError,
    InvitationExpiredError,
    InvitationNotPendingError,
    NotFoundError,
)
from lms.orm.course import Course, CourseVisibility
from lms.orm.course_invitation import CourseInvitation, InvitationStatus
from lms.orm.enrollment import Enrollment, EnrollmentStatus
from lms.orm.user import User
from lms.services.course_progress_service import load_enrollment
from lms.services.event_dispatcher import DomainEvent, EventDispatcher, EventName
from lms.state_machines.enrollment_state import EnrollmentStateMachine

logger = logging.getLogger(__name__)


@dataclass
class EnrollmentOutcome:
    enrollment: Enrollment
    is_new_enrollment: bool
    message: str = ""


class EnrollmentService:

    def __init__(self, dispatcher: EventDispatcher, enforce_invitation_expiry: bool = False):
        self.dispatcher = dispatcher
        self.enforce_invitation_expiry = enforce_invitation_expiry

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @staticmethod
    async def find_enrollment(
        db: AsyncSession,
        user_id: int,
        course_id: int,
        *statuses: EnrollmentStatus,
    ) -> Optional[Enrollment]:
        query = select(Enrollment).where(
            Enrollment.user_id == user_id,
            Enrollment.course_id == course_id,
        )
        if statuses:
            query = query.where(Enrollment.status.in_(statuses))
        result = await db.execute(query.order_by(Enrollment.id.desc()).limit(1))
        return result.scalar_one_or_none()

    async def get_active_enrollment(self, db: AsyncSession, user_id: int, course_id: int) -> Optional[Enrollment]:
        """Active or completed enrollment, the one that blocks a new enroll."""
        return await self.find_enrollment(
            db, user_id, course_id, EnrollmentStatus.ACTIVE, EnrollmentStatus.COMPLETED
        )

    async def can_enroll(self, db: AsyncSession, user_id: int, course_id: int) -> bool:
        """
        Self-service enrollment check.

        Hidden courses never accept self-enrollment. Restricted courses
        need an accepted invitation or a previous (dropped) enrollment.
        """
        course = await db.get(Course, course_id)
        if course is None or not course.is_published:
            return False
        if await self.get_active_enrollment(db, user_id, course_id):
            return False

        visibility = CourseVisibility(course.visibility)
        if visibility == CourseVisibility.HIDDEN:
            return False
        if visibility == CourseVisibility.RESTRICTED:
            if await self.find_enrollment(db, user_id, course_id, EnrollmentStatus.DROPPED):
                return True
            result = await db.execute(
                select(CourseInvitation.id).where(
                    CourseInvitation.course_id == course_id,
                    CourseInvitation.user_id == user_id,
                    CourseInvitation.status == InvitationStatus.ACCEPTED,
                ).limit(1)
            )
            return result.scalar_one_or_none() is not None
        return True

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def enroll(
        self,
        db: AsyncSession,
        user_id: int,
        course_id: int,
        invited_by: Optional[int] = None,
    ) -> EnrollmentOutcome:
        """
        Enroll a user in a course.
        
        Raises:
            NotFoundError: user or course does not exist
            AlreadyEnrolledError: an active or completed enrollment exists
            CourseNotPublishedError: course is draft or archived
        """
        async with committing(db, self.dispatcher):
            outcome = await self._enroll(db, user_id, course_id, invited_by)
        return outcome

    async def _enroll(
        self,
        db: AsyncSession,
        user_id: int,
        course_id: int,
        invited_by: Optional[int],
    ) -> EnrollmentOutcome:
        if await db.get(User, user_id) is None:
            raise NotFoundError("User", user_id)
        course = await db.get(Course, course_id)
        if course is None:
            raise NotFoundError("Course", course_id)

        existing = await self.get_active_enrollment(db, user_id, course_id)
        if existing is not None:
            logger.warning(f"User {user_id} already enrolled in course {course_id} ({existing.status.value})")
            raise AlreadyEnrolledError(user_id, course_id, existing.status.value)

        if not course.is_published:
            raise CourseNotPublishedError(course_id, course.status.value)

        dropped = await self.find_enrollment(db, user_id, course_id, EnrollmentStatus.DROPPED)
        if dropped is not None:
            await self._reactivate(db, dropped, preserve_progress=True, invited_by=invited_by)
            return EnrollmentOutcome(
                enrollment=dropped,
                is_new_enrollment=False,
                message="Enrollment reactivated with previous progress preserved",
            )

        enrollment = Enrollment(
            user_id=user_id,
            course_id=course_id,
            status=EnrollmentStatus.ACTIVE,
            progress_percentage=Decimal("0.0"),
            enrolled_at=datetime.utcnow(),
            invited_by=invited_by,
        )
        db.add(enrollment)
        await db.flush()

        await self.dispatcher.record(db, DomainEvent(
            name=EventName.ENROLLMENT_CREATED,
            aggregate_type="enrollment",
            aggregate_id=enrollment.id,
            actor_id=invited_by or user_id,
            payload={"user_id": user_id, "course_id": course_id, "invited_by": invited_by},
        ))
        logger.info(f"User {user_id} enrolled in course {course_id} (enrollment {enrollment.id})")
        return EnrollmentOutcome(enrollment=enrollment, is_new_enrollment=True, message="Enrolled")

    async def drop(
        self,
        db: AsyncSession,
        enrollment_id: int,
        reason: Optional[str] = None,
        actor_id: Optional[int] = None,
    ) -> Enrollment:
        """
        active → dropped
        
        Raises:
            InvalidTransitionError: enrollment is completed or already dropped
        """
        async with committing(db, self.dispatcher):
            enrollment = await load_enrollment(db, enrollment_id)
            EnrollmentStateMachine(enrollment).drop(reason)
            await self.dispatcher.record(db, DomainEvent(
                name=EventName.ENROLLMENT_DROPPED,
                aggregate_type="enrollment",
                aggregate_id=enrollment.id,
                actor_id=actor_id,
                payload={"user_id": enrollment.user_id, "course_id": enrollment.course_id, "reason": reason},
            ))
        return enrollment

    async def reenroll(
        self,
        db: AsyncSession,
        enrollment_id: int,
        preserve_progress: bool = True,
        invited_by: Optional[int] = None,
    ) -> Enrollment:
        """
        dropped → active
        
        Raises:
            InvalidTransitionError: enrollment is not dropped
        """
        async with committing(db, self.dispatcher):
            enrollment = await load_enrollment(db, enrollment_id)
            await self._reactivate(db, enrollment, preserve_progress, invited_by)
        return enrollment

    async def _reactivate(
        self,
        db: AsyncSession,
        enrollment: Enrollment,
        preserve_progress: bool,
        invited_by: Optional[int],
    ) -> None:
        EnrollmentStateMachine(enrollment).reactivate(preserve_progress)
        if invited_by is not None:
            enrollment.invited_by = invited_by
        await self.dispatcher.record(db, DomainEvent(
            name=EventName.ENROLLMENT_REENROLLED,
            aggregate_type="enrollment",
            aggregate_id=enrollment.id,
            actor_id=invited_by or enrollment.user_id,
            payload={
                "user_id": enrollment.user_id,
                "course_id": enrollment.course_id,
                "preserve_progress": preserve_progress,
            },
        ))

    async def complete(self, db: AsyncSession, enrollment_id: int) -> Enrollment:
        """active → completed; no-op when already completed."""
        async with committing(db, self.dispatcher):
            enrollment = await load_enrollment(db, enrollment_id)
            if EnrollmentStateMachine(enrollment).complete():
                await self.dispatcher.record(db, DomainEvent(
                    name=EventName.ENROLLMENT_COMPLETED,
                    aggregate_type="enrollment",
                    aggregate_id=enrollment.id,
                    actor_id=enrollment.user_id,
                    payload={
                        "user_id": enrollment.user_id,
                        "course_id": enrollment.course_id,
                        "progress_percentage": str(enrollment.progress_percentage),
                    },
                ))
        return enrollment

    async def accept_invitation(self, db: AsyncSession, invitation_id: int, user_id: int) -> EnrollmentOutcome:
        """
        Accept a pending invitation and enroll the invitee.

        The invitation row is locked for the whole transaction so two
        concurrent accepts cannot both enroll.
        
        Raises:
            NotFoundError: invitation missing or addressed to another user
            InvitationNotPendingError: already accepted, declined or expired
            InvitationExpiredError: past expires_at (only when expiry is enforced;
                the invitation is marked expired first)
            AlreadyEnrolledError / CourseNotPublishedError: from enroll
        """
        expired_at = None
        async with committing(db, self.dispatcher):
            result = await db.execute(
                select(CourseInvitation)
                .where(CourseInvitation.id == invitation_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            invitation = result.scalar_one_or_none()
            if invitation is None or invitation.user_id != user_id:
                raise NotFoundError("CourseInvitation", invitation_id)

            if InvitationStatus(invitation.status) != InvitationStatus.PENDING:
                raise InvitationNotPendingError(invitation_id, invitation.status.value)

            now = datetime.utcnow()
            if self.enforce_invitation_expiry and invitation.expires_at is not None and invitation.expires_at <= now:
                invitation.status = InvitationStatus.EXPIRED
                invitation.responded_at = now
                expired_at = invitation.expires_at
                outcome = None
            else:
                outcome = await self._enroll(db, user_id, invitation.course_id, invitation.invited_by)
                invitation.status = InvitationStatus.ACCEPTED
                invitation.responded_at = now

        if outcome is None:
            logger.warning(f"Invitation {invitation_id} expired at {expired_at}")
            raise InvitationExpiredError(invitation_id, expired_at)

        logger.info(f"User {user_id} accepted invitation {invitation_id}")
        return outcome
