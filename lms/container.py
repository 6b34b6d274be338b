"""
lms/container.py
Composition root: the only place that turns settings into services

Every policy (progress strategy, weights, thresholds, open-question
flags) is passed to services as a constructor argument here.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from lms.config.settings import LMSSettings, get_settings
from lms.orm.assessment import Assessment
from lms.orm.enrollment import Enrollment, EnrollmentStatus
from lms.services.attempt_eligibility import AttemptEligibilityChecker
from lms.services.attempt_service import AttemptService
from lms.services.course_progress_service import CourseProgressService
from lms.services.enrollment_service import EnrollmentService
from lms.services.event_dispatcher import DomainEvent, EventDispatcher, EventName
from lms.services.grading_engine import GradingEngine
from lms.services.progress_calculator import ProgressCalculatorFactory
from lms.services.progress_tracking_service import ProgressTrackingService

logger = logging.getLogger(__name__)


@dataclass
class LMSContainer:
    settings: LMSSettings
    dispatcher: EventDispatcher
    grading_engine: GradingEngine
    eligibility: AttemptEligibilityChecker
    attempts: AttemptService
    progress_factory: ProgressCalculatorFactory
    course_progress: CourseProgressService
    tracking: ProgressTrackingService
    enrollments: EnrollmentService


def build_container(settings: Optional[LMSSettings] = None, dispatcher: Optional[EventDispatcher] = None) -> LMSContainer:
    settings = settings or get_settings()
    dispatcher = dispatcher or EventDispatcher()

    grading_engine = GradingEngine()
    eligibility = AttemptEligibilityChecker(
        require_active_enrollment=settings.attempt_requires_active_enrollment,
    )
    progress_factory = ProgressCalculatorFactory(
        default_type=settings.progress_calculator,
        lesson_weight=settings.lesson_weight,
        assessment_weight=settings.assessment_weight,
    )
    course_progress = CourseProgressService(
        progress_factory,
        dispatcher,
        auto_complete=settings.auto_complete_enrollment,
    )

    return LMSContainer(
        settings=settings,
        dispatcher=dispatcher,
        grading_engine=grading_engine,
        eligibility=eligibility,
        attempts=AttemptService(eligibility, grading_engine, dispatcher),
        progress_factory=progress_factory,
        course_progress=course_progress,
        tracking=ProgressTrackingService(
            course_progress,
            dispatcher,
            media_threshold=settings.media_completion_threshold,
            page_threshold=settings.page_completion_threshold,
        ),
        enrollments=EnrollmentService(
            dispatcher,
            enforce_invitation_expiry=settings.enforce_invitation_expiry,
        ),
    )


def register_default_listeners(container: LMSContainer, session_factory: async_sessionmaker) -> None:
    """
    Recalculate course progress when an attempt is graded or rescored.

    Runs after the grading transaction has committed, in its own session.
    """

    async def recalculate_on_attempt_graded(event: DomainEvent) -> None:
        user_id = event.payload["user_id"]
        course_id = event.payload.get("course_id")
        async with session_factory() as db:
            if course_id is None:
                assessment = await db.get(Assessment, event.payload["assessment_id"])
                course_id = assessment.course_id
            result = await db.execute(
                select(Enrollment.id).where(
                    Enrollment.user_id == user_id,
                    Enrollment.course_id == course_id,
                    Enrollment.status == EnrollmentStatus.ACTIVE,
                )
            )
            for enrollment_id in result.scalars().all():
                await container.course_progress.recalculate_course_progress(db, enrollment_id)

    container.dispatcher.subscribe(EventName.ATTEMPT_GRADED, recalculate_on_attempt_graded)
    container.dispatcher.subscribe(EventName.ATTEMPT_RESCORED, recalculate_on_attempt_graded)
    logger.info("Registered default domain event listeners")
