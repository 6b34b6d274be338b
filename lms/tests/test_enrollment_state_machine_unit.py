"""
Unit Tests for the Enrollment State Machine

Transition rules, capabilities and timestamp handling on transient
Enrollment objects.
"""
import pytest
from datetime import datetime
from decimal import Decimal

from lms.exceptions import InvalidTransitionError
from lms.orm.enrollment import Enrollment, EnrollmentStatus
from lms.state_machines.enrollment_state import EnrollmentStateMachine


def make_enrollment(status: EnrollmentStatus, **fields) -> Enrollment:
    return Enrollment(id=1, user_id=1, course_id=1, status=status, **fields)


class TestTransitions:
    """Test the transition table."""

    def test_active_can_complete_or_drop(self):
        assert EnrollmentStateMachine.can_transition(EnrollmentStatus.ACTIVE, EnrollmentStatus.COMPLETED)
        assert EnrollmentStateMachine.can_transition(EnrollmentStatus.ACTIVE, EnrollmentStatus.DROPPED)

    def test_dropped_can_only_reactivate(self):
        assert EnrollmentStateMachine.can_transition(EnrollmentStatus.DROPPED, EnrollmentStatus.ACTIVE)
        assert EnrollmentStatus.COMPLETED not in EnrollmentStateMachine.TRANSITIONS[EnrollmentStatus.DROPPED]

    def test_completed_is_terminal(self):
        """Test nothing leaves completed."""
        for target in EnrollmentStatus:
            assert not EnrollmentStateMachine.can_transition(EnrollmentStatus.COMPLETED, target)


class TestCapabilities:

    @pytest.mark.parametrize("status,access,track", [
        (EnrollmentStatus.ACTIVE, True, True),
        (EnrollmentStatus.COMPLETED, True, False),
        (EnrollmentStatus.DROPPED, False, False),
    ])
    def test_capabilities_by_status(self, status, access, track):
        machine = EnrollmentStateMachine(make_enrollment(status))

        assert machine.can_access_content() is access
        assert machine.can_track_progress() is track

    def test_ensure_can_track_progress(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            EnrollmentStateMachine(make_enrollment(EnrollmentStatus.COMPLETED)).ensure_can_track_progress()

        assert exc_info.value.to_state == "track_progress"


class TestCommands:

    def test_complete(self):
        enrollment = make_enrollment(EnrollmentStatus.ACTIVE)
        at = datetime(2025, 3, 1, 12, 0)

        assert EnrollmentStateMachine(enrollment).complete(at=at) is True
        assert enrollment.status == EnrollmentStatus.COMPLETED
        assert enrollment.completed_at == at

    def test_complete_twice_is_noop(self):
        """Test completing a completed enrollment changes nothing."""
        at = datetime(2025, 3, 1, 12, 0)
        enrollment = make_enrollment(EnrollmentStatus.COMPLETED, completed_at=at)

        assert EnrollmentStateMachine(enrollment).complete() is False
        assert enrollment.completed_at == at

    def test_cannot_complete_dropped(self):
        with pytest.raises(InvalidTransitionError):
            EnrollmentStateMachine(make_enrollment(EnrollmentStatus.DROPPED)).complete()

    def test_drop_records_reason(self):
        enrollment = make_enrollment(EnrollmentStatus.ACTIVE)
        EnrollmentStateMachine(enrollment).drop("Schedule conflict")

        assert enrollment.status == EnrollmentStatus.DROPPED
        assert enrollment.dropped_at is not None
        assert enrollment.drop_reason == "Schedule conflict"

    @pytest.mark.parametrize("status", [EnrollmentStatus.COMPLETED, EnrollmentStatus.DROPPED])
    def test_only_active_can_drop(self, status):
        with pytest.raises(InvalidTransitionError):
            EnrollmentStateMachine(make_enrollment(status)).drop()

    def test_reactivate_preserving_progress(self):
        """Test progress and start time survive a re-enrollment."""
        started = datetime(2025, 1, 5)
        enrollment = make_enrollment(
            EnrollmentStatus.DROPPED,
            progress_percentage=Decimal("40.0"),
            started_at=started,
            last_lesson_id=7,
            dropped_at=datetime(2025, 2, 1),
            drop_reason="Busy",
        )
        EnrollmentStateMachine(enrollment).reactivate(preserve_progress=True)

        assert enrollment.status == EnrollmentStatus.ACTIVE
        assert enrollment.progress_percentage == Decimal("40.0")
        assert enrollment.started_at == started
        assert enrollment.last_lesson_id == 7
        assert enrollment.dropped_at is None
        assert enrollment.drop_reason is None

    def test_reactivate_resetting_progress(self):
        enrollment = make_enrollment(
            EnrollmentStatus.DROPPED,
            progress_percentage=Decimal("40.0"),
            started_at=datetime(2025, 1, 5),
            last_lesson_id=7,
        )
        EnrollmentStateMachine(enrollment).reactivate(preserve_progress=False)

        assert enrollment.progress_percentage == Decimal("0.0")
        assert enrollment.started_at is None
        assert enrollment.last_lesson_id is None

    def test_cannot_reactivate_active(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            EnrollmentStateMachine(make_enrollment(EnrollmentStatus.ACTIVE)).reactivate()

        assert exc_info.value.from_state == "active"
        assert exc_info.value.to_state == "active"
