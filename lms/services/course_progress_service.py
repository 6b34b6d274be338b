"""
lms/services/course_progress_service.py
Persists course progress and completes enrollments

recalculate() is a pure re-derivation from stored rows: running it twice
gives the same result, so retries and replays are safe. Completion is
sticky: once an enrollment is completed, a later drop in percentage
(for example a new lesson) does not reopen it.
"""
import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lms.core.transaction import committing
from lms.exceptions import NotFoundError
from lms.orm.course import Course
from lms.orm.enrollment import Enrollment, EnrollmentStatus
from lms.schemas.progress import AssessmentStats, CourseProgress
from lms.services import progress_calculator
from lms.services.event_dispatcher import DomainEvent, EventDispatcher, EventName
from lms.services.progress_calculator import ProgressCalculatorFactory
from lms.state_machines.enrollment_state import EnrollmentStateMachine

logger = logging.getLogger(__name__)


async def load_enrollment(db: AsyncSession, enrollment_id: int, lock: bool = True) -> Enrollment:
    query = (
        select(Enrollment)
        .where(Enrollment.id == enrollment_id)
        .execution_options(populate_existing=True)
    )
    if lock:
        query = query.with_for_update()
    result = await db.execute(query)
    enrollment = result.scalar_one_or_none()
    if enrollment is None:
        raise NotFoundError("Enrollment", enrollment_id)
    return enrollment


class CourseProgressService:

    def __init__(
        self,
        factory: ProgressCalculatorFactory,
        dispatcher: EventDispatcher,
        auto_complete: bool = True,
    ):
        self.factory = factory
        self.dispatcher = dispatcher
        self.auto_complete = auto_complete

    async def recalculate(self, db: AsyncSession, enrollment: Enrollment) -> CourseProgress:
        """
        Recompute and store progress_percentage inside the caller's transaction.

        An active enrollment that reaches completion is completed through
        the state machine and an enrollment.completed event is recorded.
        """
        course = await db.get(Course, enrollment.course_id)
        calculator = self.factory.for_course(course)
        snapshot = await calculator.snapshot(db, enrollment)
        percentage = calculator.compute(snapshot)
        is_complete = calculator.complete(snapshot)

        enrollment.progress_percentage = percentage

        newly_completed = False
        machine = EnrollmentStateMachine(enrollment)
        if is_complete and self.auto_complete and machine.state == EnrollmentStatus.ACTIVE:
            newly_completed = machine.complete()
            await self.dispatcher.record(db, DomainEvent(
                name=EventName.ENROLLMENT_COMPLETED,
                aggregate_type="enrollment",
                aggregate_id=enrollment.id,
                actor_id=enrollment.user_id,
                payload={
                    "course_id": enrollment.course_id,
                    "user_id": enrollment.user_id,
                    "progress_percentage": str(percentage),
                    "strategy": calculator.name,
                },
            ))

        logger.info(
            f"Enrollment {enrollment.id} progress={percentage}% "
            f"strategy={calculator.name} complete={is_complete}"
        )
        return CourseProgress(
            enrollment_id=enrollment.id,
            strategy=calculator.name,
            percentage=percentage,
            is_complete=is_complete,
            newly_completed=newly_completed,
            lessons_total=snapshot.lessons_total,
            lessons_completed=snapshot.lessons_completed,
        )

    async def recalculate_course_progress(self, db: AsyncSession, enrollment_id: int) -> CourseProgress:
        async with committing(db, self.dispatcher):
            enrollment = await load_enrollment(db, enrollment_id)
            progress = await self.recalculate(db, enrollment)
        return progress

    async def recalculate_for_course(
        self,
        db: AsyncSession,
        course_id: Optional[int] = None,
        include_completed: bool = False,
    ) -> List[CourseProgress]:
        """
        Recalculate every active enrollment (optionally completed ones too).

        Used after lessons are added or deleted and by the CLI.
        """
        statuses = [EnrollmentStatus.ACTIVE]
        if include_completed:
            statuses.append(EnrollmentStatus.COMPLETED)

        query = select(Enrollment.id).where(Enrollment.status.in_(statuses)).order_by(Enrollment.id)
        if course_id is not None:
            query = query.where(Enrollment.course_id == course_id)
        enrollment_ids = list((await db.execute(query)).scalars().all())

        results = []
        for enrollment_id in enrollment_ids:
            results.append(await self.recalculate_course_progress(db, enrollment_id))
        logger.info(f"Recalculated progress for {len(results)} enrollments (course={course_id})")
        return results

    async def assessment_stats(self, db: AsyncSession, enrollment_id: int) -> AssessmentStats:
        enrollment = await load_enrollment(db, enrollment_id, lock=False)
        return await progress_calculator.assessment_stats(db, enrollment)

    async def progress_report(self, db: AsyncSession, enrollment_id: int) -> CourseProgress:
        """Read-only view: computed progress plus assessment stats, nothing stored."""
        enrollment = await load_enrollment(db, enrollment_id, lock=False)
        course = await db.get(Course, enrollment.course_id)
        calculator = self.factory.for_course(course)
        snapshot = await calculator.snapshot(db, enrollment)
        return CourseProgress(
            enrollment_id=enrollment.id,
            strategy=calculator.name,
            percentage=calculator.compute(snapshot),
            is_complete=calculator.complete(snapshot),
            lessons_total=snapshot.lessons_total,
            lessons_completed=snapshot.lessons_completed,
            assessments=await progress_calculator.assessment_stats(db, enrollment),
        )
