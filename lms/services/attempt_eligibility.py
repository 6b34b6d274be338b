"""
lms/services/attempt_eligibility.py
Decides whether a user may start a new attempt on an assessment

Rules, checked in order:
1. assessment_not_published: assessment.status must be published
2. not_enrolled: the user needs an enrollment in the assessment's course
3. enrollment_inactive: only when require_active_enrollment is on, the
   enrollment must still grant content access (active or completed)
4. max_attempts_reached: with max_attempts > 0, submitted + graded +
   completed attempts must be below the limit

In-progress attempts never count toward the limit.
"""
import logging
from typing import Optional

from sqlalchemy import Select, select, func
from sqlalchemy.ext.asyncio import AsyncSession

from lms.exceptions import IneligibleAttemptError, MaxAttemptsReachedError
from lms.orm.assessment import Assessment, AssessmentStatus
from lms.orm.assessment_attempt import AssessmentAttempt, COUNTED_ATTEMPT_STATUSES
from lms.orm.enrollment import Enrollment
from lms.schemas.assessment import EligibilityResult
from lms.state_machines.enrollment_state import EnrollmentStateMachine

logger = logging.getLogger(__name__)


class EligibilityRule:
    ASSESSMENT_NOT_PUBLISHED = "assessment_not_published"
    NOT_ENROLLED = "not_enrolled"
    ENROLLMENT_INACTIVE = "enrollment_inactive"
    MAX_ATTEMPTS_REACHED = "max_attempts_reached"


class AttemptEligibilityChecker:

    def __init__(self, require_active_enrollment: bool = False):
        self.require_active_enrollment = require_active_enrollment

    @staticmethod
    async def count_counted_attempts(db: AsyncSession, assessment_id: int, user_id: int) -> int:
        result = await db.execute(
            select(func.count(AssessmentAttempt.id)).where(
                AssessmentAttempt.assessment_id == assessment_id,
                AssessmentAttempt.user_id == user_id,
                AssessmentAttempt.status.in_(COUNTED_ATTEMPT_STATUSES),
            )
        )
        return result.scalar_one()

    @staticmethod
    async def next_attempt_number(db: AsyncSession, assessment_id: int, user_id: int) -> int:
        """1 + highest existing attempt_number (any status), or 1."""
        result = await db.execute(
            select(func.max(AssessmentAttempt.attempt_number)).where(
                AssessmentAttempt.assessment_id == assessment_id,
                AssessmentAttempt.user_id == user_id,
            )
        )
        highest = result.scalar_one_or_none()
        return (highest or 0) + 1

    @staticmethod
    async def find_enrollment(db: AsyncSession, course_id: int, user_id: int) -> Optional[Enrollment]:
        result = await db.execute(
            select(Enrollment)
            .where(Enrollment.course_id == course_id, Enrollment.user_id == user_id)
            .order_by(Enrollment.enrolled_at.desc(), Enrollment.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def enrollment_lock_query(course_id: int, user_id: int) -> Select:
        return (
            select(Enrollment.id)
            .where(Enrollment.course_id == course_id, Enrollment.user_id == user_id)
            .with_for_update()
        )

    async def lock_enrollment(self, db: AsyncSession, course_id: int, user_id: int) -> None:
        """Serialize attempt starts for one learner on one course."""
        await db.execute(self.enrollment_lock_query(course_id, user_id))

    async def evaluate(self, db: AsyncSession, assessment: Assessment, user_id: int) -> EligibilityResult:
        """Run every rule and report the first failure, with attempt counts."""
        attempts_used = await self.count_counted_attempts(db, assessment.id, user_id)
        next_number = await self.next_attempt_number(db, assessment.id, user_id)
        remaining = None
        if assessment.has_attempt_limit:
            remaining = max(0, assessment.max_attempts - attempts_used)

        rule = await self._first_failed_rule(db, assessment, user_id, attempts_used)
        return EligibilityResult(
            eligible=rule is None,
            rule=rule,
            attempts_used=attempts_used,
            attempts_remaining=remaining,
            next_attempt_number=next_number,
        )

    async def _first_failed_rule(
        self,
        db: AsyncSession,
        assessment: Assessment,
        user_id: int,
        attempts_used: int,
    ) -> Optional[str]:
        if AssessmentStatus(assessment.status) != AssessmentStatus.PUBLISHED:
            return EligibilityRule.ASSESSMENT_NOT_PUBLISHED

        enrollment = await self.find_enrollment(db, assessment.course_id, user_id)
        if enrollment is None:
            return EligibilityRule.NOT_ENROLLED
        if self.require_active_enrollment and not EnrollmentStateMachine(enrollment).can_access_content():
            return EligibilityRule.ENROLLMENT_INACTIVE

        if assessment.has_attempt_limit and attempts_used >= assessment.max_attempts:
            return EligibilityRule.MAX_ATTEMPTS_REACHED
        return None

    async def can_be_attempted_by(self, db: AsyncSession, assessment: Assessment, user_id: int) -> bool:
        return (await self.evaluate(db, assessment, user_id)).eligible

    async def ensure_eligible(self, db: AsyncSession, assessment: Assessment, user_id: int) -> EligibilityResult:
        """
        Raises:
            MaxAttemptsReachedError: attempt limit used up
            IneligibleAttemptError: any other rule failed
        """
        decision = await self.evaluate(db, assessment, user_id)
        if decision.eligible:
            return decision

        logger.warning(
            f"User {user_id} ineligible for assessment {assessment.id}: {decision.rule}"
        )
        if decision.rule == EligibilityRule.MAX_ATTEMPTS_REACHED:
            raise MaxAttemptsReachedError(
                assessment_id=assessment.id,
                user_id=user_id,
                max_attempts=assessment.max_attempts,
                attempts_used=decision.attempts_used,
            )
        raise IneligibleAttemptError(decision.rule, assessment.id, user_id)
