"""
Enrollment State Machine

States: active (initial), completed, dropped

    active    → completed   progress reached completion
    active    → dropped     learner or staff drops the course
    dropped   → active      re-enrollment, optionally resetting progress

Completed is terminal. Completing an already completed enrollment is a
no-op; every other move not listed above raises InvalidTransitionError.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, FrozenSet, List, Optional

from lms.exceptions import InvalidTransitionError
from lms.orm.enrollment import Enrollment, EnrollmentStatus

logger = logging.getLogger(__name__)


class Capability:
    ACCESS_CONTENT = "access_content"
    TRACK_PROGRESS = "track_progress"


class EnrollmentStateMachine:
    """Guards status changes of a single Enrollment."""

    TRANSITIONS: Dict[EnrollmentStatus, List[EnrollmentStatus]] = {
        EnrollmentStatus.ACTIVE: [EnrollmentStatus.COMPLETED, EnrollmentStatus.DROPPED],
        EnrollmentStatus.COMPLETED: [],
        EnrollmentStatus.DROPPED: [EnrollmentStatus.ACTIVE],
    }

    CAPABILITIES: Dict[EnrollmentStatus, FrozenSet[str]] = {
        EnrollmentStatus.ACTIVE: frozenset({Capability.ACCESS_CONTENT, Capability.TRACK_PROGRESS}),
        EnrollmentStatus.COMPLETED: frozenset({Capability.ACCESS_CONTENT}),
        EnrollmentStatus.DROPPED: frozenset(),
    }

    def __init__(self, enrollment: Enrollment):
        self.enrollment = enrollment

    @property
    def state(self) -> EnrollmentStatus:
        return EnrollmentStatus(self.enrollment.status)

    @classmethod
    def can_transition(cls, from_state: EnrollmentStatus, to_state: EnrollmentStatus) -> bool:
        return to_state in cls.TRANSITIONS.get(from_state, [])

    def has_capability(self, capability: str) -> bool:
        return capability in self.CAPABILITIES[self.state]

    def can_access_content(self) -> bool:
        return self.has_capability(Capability.ACCESS_CONTENT)

    def can_track_progress(self) -> bool:
        return self.has_capability(Capability.TRACK_PROGRESS)

    def _reject(self, to_state: EnrollmentStatus, reason: str = None) -> InvalidTransitionError:
        return InvalidTransitionError(
            from_state=self.state.value,
            to_state=to_state.value,
            model="Enrollment",
            model_id=self.enrollment.id,
            reason=reason,
        )

    def ensure_can_track_progress(self) -> None:
        if not self.can_track_progress():
            raise InvalidTransitionError(
                from_state=self.state.value,
                to_state="track_progress",
                model="Enrollment",
                model_id=self.enrollment.id,
                reason="Progress can only be tracked on active enrollments",
            )

    def complete(self, at: Optional[datetime] = None) -> bool:
        """
        Move active → completed.

        Returns:
            True if the status changed, False if it was already completed.
        """
        if self.state == EnrollmentStatus.COMPLETED:
            return False
        if not self.can_transition(self.state, EnrollmentStatus.COMPLETED):
            raise self._reject(EnrollmentStatus.COMPLETED, "Only active enrollments can be completed")

        self.enrollment.status = EnrollmentStatus.COMPLETED
        self.enrollment.completed_at = at or datetime.utcnow()
        logger.info(f"Enrollment {self.enrollment.id} completed")
        return True

    def drop(self, reason: Optional[str] = None, at: Optional[datetime] = None) -> None:
        if not self.can_transition(self.state, EnrollmentStatus.DROPPED):
            raise self._reject(EnrollmentStatus.DROPPED, "Only active enrollments can be dropped")

        self.enrollment.status = EnrollmentStatus.DROPPED
        self.enrollment.dropped_at = at or datetime.utcnow()
        self.enrollment.drop_reason = reason
        logger.info(f"Enrollment {self.enrollment.id} dropped (reason={reason!r})")

    def reactivate(self, preserve_progress: bool = True, at: Optional[datetime] = None) -> None:
        """
        Move dropped → active.

        When preserve_progress is False the learner starts over:
        progress_percentage, started_at and last_lesson_id are cleared.
        Lesson progress rows are kept either way.
        """
        if not self.can_transition(self.state, EnrollmentStatus.ACTIVE):
            raise self._reject(EnrollmentStatus.ACTIVE, "Only dropped enrollments can be reactivated")

        self.enrollment.status = EnrollmentStatus.ACTIVE
        self.enrollment.enrolled_at = at or datetime.utcnow()
        self.enrollment.completed_at = None
        self.enrollment.dropped_at = None
        self.enrollment.drop_reason = None
        if not preserve_progress:
            self.enrollment.progress_percentage = Decimal("0.0")
            self.enrollment.started_at = None
            self.enrollment.last_lesson_id = None

        logger.info(
            f"Enrollment {self.enrollment.id} reactivated (preserve_progress={preserve_progress})"
        )
