"""
Attempt State Machine

State Flow: in_progress → submitted → graded → completed

Transitions are one-directional; there is no way back to an earlier
state. Timestamps are stamped here so every caller gets them the same way.
"""
import logging
from datetime import datetime
from typing import Dict, List, Optional

from lms.exceptions import InvalidTransitionError
from lms.orm.assessment_attempt import AssessmentAttempt, AttemptStatus

logger = logging.getLogger(__name__)


class AttemptStateMachine:
    """Guards status changes of a single AssessmentAttempt."""

    TRANSITIONS: Dict[AttemptStatus, List[AttemptStatus]] = {
        AttemptStatus.IN_PROGRESS: [AttemptStatus.SUBMITTED],
        AttemptStatus.SUBMITTED: [AttemptStatus.GRADED],
        AttemptStatus.GRADED: [AttemptStatus.COMPLETED],
        AttemptStatus.COMPLETED: [],
    }

    # States in which answers may receive a (re)grade.
    GRADABLE_STATES = (AttemptStatus.SUBMITTED, AttemptStatus.GRADED)

    def __init__(self, attempt: AssessmentAttempt):
        self.attempt = attempt

    @property
    def state(self) -> AttemptStatus:
        return AttemptStatus(self.attempt.status)

    @classmethod
    def can_transition(cls, from_state: AttemptStatus, to_state: AttemptStatus) -> bool:
        return to_state in cls.TRANSITIONS.get(from_state, [])

    def ensure_state(self, *allowed: AttemptStatus, action: str) -> None:
        """Raise unless the attempt is in one of the allowed states."""
        if self.state not in allowed:
            raise InvalidTransitionError(
                from_state=self.state.value,
                to_state=action,
                model="AssessmentAttempt",
                model_id=self.attempt.id,
                reason=f"{action} requires status in {[s.value for s in allowed]}",
            )

    def transition_to(self, to_state: AttemptStatus, at: Optional[datetime] = None) -> None:
        from_state = self.state
        if not self.can_transition(from_state, to_state):
            raise InvalidTransitionError(
                from_state=from_state.value,
                to_state=to_state.value,
                model="AssessmentAttempt",
                model_id=self.attempt.id,
            )

        at = at or datetime.utcnow()
        self.attempt.status = to_state
        if to_state == AttemptStatus.SUBMITTED:
            self.attempt.submitted_at = at
        elif to_state == AttemptStatus.GRADED and self.attempt.graded_at is None:
            self.attempt.graded_at = at
        elif to_state == AttemptStatus.COMPLETED:
            self.attempt.completed_at = at

        logger.info(
            f"Attempt {self.attempt.id} transitioned {from_state.value} → {to_state.value}"
        )
