"""
lms/services/progress_tracking_service.py
Per-lesson progress: pages, media position, time spent

A lesson completes automatically when
- the highest page reached hits ceil(total_pages * page_threshold), or
- the media position reaches media_threshold of the media duration.

The first completion of a lesson records lesson.completed and
recalculates course progress in the same transaction.
"""
import logging
import math
from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lms.core.db_types import quantize, QUANTIZER_2DP
from lms.core.transaction import committing
from lms.exceptions import NotFoundError
from lms.orm.course import Lesson
from lms.orm.enrollment import Enrollment
from lms.orm.lesson_progress import LessonProgress
from lms.schemas.progress import LessonProgressResult, ProgressUpdate
from lms.services.course_progress_service import CourseProgressService, load_enrollment
from lms.services.event_dispatcher import DomainEvent, EventDispatcher, EventName
from lms.state_machines.enrollment_state import EnrollmentStateMachine

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


class ProgressTrackingService:

    def __init__(
        self,
        course_progress: CourseProgressService,
        dispatcher: EventDispatcher,
        media_threshold: Decimal = Decimal("0.9"),
        page_threshold: Decimal = Decimal("1.0"),
    ):
        self.course_progress = course_progress
        self.dispatcher = dispatcher
        self.media_threshold = Decimal(media_threshold)
        self.page_threshold = Decimal(page_threshold)

    def required_pages(self, total_pages: int) -> int:
        return max(1, math.ceil(Decimal(total_pages) * self.page_threshold))

    def media_reached_threshold(self, position: int, duration: int) -> bool:
        return duration > 0 and Decimal(position) >= Decimal(duration) * self.media_threshold

    @staticmethod
    async def _load_lesson(db: AsyncSession, lesson_id: int, course_id: int) -> Lesson:
        lesson = await db.get(Lesson, lesson_id)
        if lesson is None or lesson.is_deleted or lesson.course_id != course_id:
            raise NotFoundError("Lesson", lesson_id)
        return lesson

    @staticmethod
    async def get_or_create_progress(db: AsyncSession, enrollment: Enrollment, lesson: Lesson) -> LessonProgress:
        result = await db.execute(
            select(LessonProgress).where(
                LessonProgress.enrollment_id == enrollment.id,
                LessonProgress.lesson_id == lesson.id,
            )
        )
        progress = result.scalar_one_or_none()
        if progress is None:
            progress = LessonProgress(
                enrollment_id=enrollment.id,
                lesson_id=lesson.id,
                highest_page_reached=0,
                time_spent_seconds=0,
                is_completed=False,
            )
            db.add(progress)
            await db.flush()
        return progress

    async def _open(self, db: AsyncSession, enrollment_id: int, lesson_id: int) -> Tuple[Enrollment, Lesson, LessonProgress]:
        enrollment = await load_enrollment(db, enrollment_id)
        EnrollmentStateMachine(enrollment).ensure_can_track_progress()
        lesson = await self._load_lesson(db, lesson_id, enrollment.course_id)
        progress = await self.get_or_create_progress(db, enrollment, lesson)
        return enrollment, lesson, progress

    async def _touch_enrollment(self, db: AsyncSession, enrollment: Enrollment, lesson: Lesson, now: datetime) -> None:
        enrollment.last_lesson_id = lesson.id
        if enrollment.started_at is None:
            enrollment.started_at = now
            await self.dispatcher.record(db, DomainEvent(
                name=EventName.COURSE_STARTED,
                aggregate_type="enrollment",
                aggregate_id=enrollment.id,
                actor_id=enrollment.user_id,
                payload={"course_id": enrollment.course_id, "lesson_id": lesson.id},
            ))

    async def update_progress(
        self,
        db: AsyncSession,
        enrollment_id: int,
        lesson_id: int,
        update: ProgressUpdate,
    ) -> LessonProgressResult:
        """
        Record viewer progress for one lesson.
        
        Raises:
            NotFoundError: enrollment or lesson missing, or lesson not in the course
            InvalidTransitionError: enrollment is dropped or completed
        """
        async with committing(db, self.dispatcher):
            enrollment, lesson, progress = await self._open(db, enrollment_id, lesson_id)
            was_completed = progress.is_completed
            now = datetime.utcnow()

            if update.media_position_seconds is not None:
                self._apply_media(progress, update, now)
            if update.current_page is not None:
                self._apply_pages(progress, update, now)

            progress.time_spent_seconds = (progress.time_spent_seconds or 0) + update.time_spent_seconds
            progress.last_viewed_at = now
            await self._touch_enrollment(db, enrollment, lesson, now)
            await db.flush()

            course_progress = None
            newly_completed = progress.is_completed and not was_completed
            if newly_completed:
                course_progress = await self._on_lesson_completed(db, enrollment, lesson)

        return self._result(progress, newly_completed, course_progress)

    async def complete_lesson(self, db: AsyncSession, enrollment_id: int, lesson_id: int) -> LessonProgressResult:
        """Mark a lesson complete by hand; calling it again changes nothing."""
        async with committing(db, self.dispatcher):
            enrollment, lesson, progress = await self._open(db, enrollment_id, lesson_id)
            if progress.is_completed:
                return self._result(progress, False, None)

            now = datetime.utcnow()
            progress.is_completed = True
            progress.completed_at = now
            progress.last_viewed_at = now
            await self._touch_enrollment(db, enrollment, lesson, now)
            await db.flush()
            course_progress = await self._on_lesson_completed(db, enrollment, lesson)

        return self._result(progress, True, course_progress)

    async def _on_lesson_completed(self, db: AsyncSession, enrollment: Enrollment, lesson: Lesson):
        await self.dispatcher.record(db, DomainEvent(
            name=EventName.LESSON_COMPLETED,
            aggregate_type="enrollment",
            aggregate_id=enrollment.id,
            actor_id=enrollment.user_id,
            payload={"lesson_id": lesson.id, "course_id": enrollment.course_id},
        ))
        logger.info(f"Enrollment {enrollment.id} completed lesson {lesson.id}")
        return await self.course_progress.recalculate(db, enrollment)

    def _apply_media(self, progress: LessonProgress, update: ProgressUpdate, now: datetime) -> None:
        progress.media_position_seconds = update.media_position_seconds
        if update.media_duration_seconds is not None:
            progress.media_duration_seconds = update.media_duration_seconds

        duration = progress.media_duration_seconds or 0
        if duration <= 0:
            return

        position = progress.media_position_seconds
        percentage = Decimal(position) * HUNDRED / Decimal(duration)
        progress.media_progress_percentage = min(HUNDRED, quantize(percentage, QUANTIZER_2DP))

        if not progress.is_completed and self.media_reached_threshold(position, duration):
            progress.is_completed = True
            progress.completed_at = now

    def _apply_pages(self, progress: LessonProgress, update: ProgressUpdate, now: datetime) -> None:
        progress.current_page = update.current_page
        if update.total_pages is not None:
            progress.total_pages = update.total_pages
        if update.pagination_metadata is not None:
            progress.pagination_metadata = update.pagination_metadata

        progress.highest_page_reached = max(progress.highest_page_reached or 0, update.current_page)

        if (
            not progress.is_completed
            and progress.total_pages
            and progress.highest_page_reached >= self.required_pages(progress.total_pages)
        ):
            progress.is_completed = True
            progress.completed_at = now

    @staticmethod
    def _result(progress: LessonProgress, newly_completed: bool, course_progress) -> LessonProgressResult:
        return LessonProgressResult(
            enrollment_id=progress.enrollment_id,
            lesson_id=progress.lesson_id,
            highest_page_reached=progress.highest_page_reached or 0,
            media_progress_percentage=progress.media_progress_percentage,
            time_spent_seconds=progress.time_spent_seconds or 0,
            is_completed=progress.is_completed,
            newly_completed=newly_completed,
            course_progress=course_progress,
        )
