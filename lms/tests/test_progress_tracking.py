"""
Lesson Progress and Course Progress Tests

Page and media tracking, lesson completion, course percentage updates
and automatic enrollment completion.
"""
import pytest
import pytest_asyncio
from decimal import Decimal
from sqlalchemy import select
from sqlalchemy.exc import SAWarning
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from typing import AsyncGenerator

from lms.exceptions import InvalidTransitionError, NotFoundError
from lms.orm.base import Base
from lms.orm.assessment import Assessment, AssessmentStatus
from lms.orm.assessment_attempt import AssessmentAttempt, AttemptStatus
from lms.orm.course import ContentType, Course, CourseStatus, Lesson
from lms.orm.domain_event_log import DomainEventLog
from lms.orm.enrollment import Enrollment, EnrollmentStatus
from lms.orm.lesson_progress import LessonProgress
from lms.orm.user import User, UserRole
from lms.schemas.progress import ProgressUpdate
from lms.services.course_progress_service import CourseProgressService
from lms.services.event_dispatcher import EventDispatcher, EventName
from lms.services.progress_calculator import ProgressCalculatorFactory, passed_assessment_ids
from lms.services.progress_tracking_service import ProgressTrackingService

# Test database setup
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False)
    async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    # Create tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session() as session:
        yield session

    # Cleanup
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def dispatcher() -> EventDispatcher:
    return EventDispatcher()


@pytest.fixture
def course_progress(dispatcher: EventDispatcher) -> CourseProgressService:
    return CourseProgressService(ProgressCalculatorFactory(), dispatcher)


@pytest.fixture
def tracking(course_progress: CourseProgressService, dispatcher: EventDispatcher) -> ProgressTrackingService:
    return ProgressTrackingService(course_progress, dispatcher)


@pytest_asyncio.fixture
async def learner(db_session: AsyncSession) -> User:
    user = User(email="learner@test.com", full_name="Test Learner", role=UserRole.LEARNER)
    db_session.add(user)
    await db_session.commit()
    return user


@pytest_asyncio.fixture
async def course(db_session: AsyncSession) -> Course:
    """Published course with three lessons: text, video, document."""
    course = Course(
        title="Evidence",
        status=CourseStatus.PUBLISHED,
        lessons=[
            Lesson(title="Introduction", content_type=ContentType.TEXT, position=0),
            Lesson(title="Hearsay lecture", content_type=ContentType.VIDEO, position=1),
            Lesson(title="Case reader", content_type=ContentType.DOCUMENT, position=2),
        ],
    )
    db_session.add(course)
    await db_session.commit()
    return course


@pytest_asyncio.fixture
async def enrollment(db_session: AsyncSession, learner: User, course: Course) -> Enrollment:
    enrollment = Enrollment(user_id=learner.id, course_id=course.id, status=EnrollmentStatus.ACTIVE)
    db_session.add(enrollment)
    await db_session.commit()
    return enrollment


async def events_named(db: AsyncSession, name: str):
    result = await db.execute(select(DomainEventLog).where(DomainEventLog.event_name == name))
    return result.scalars().all()


# ==========================================
# Lesson completion
# ==========================================

class TestLessonCompletion:

    @pytest.mark.asyncio
    async def test_one_of_three_lessons(self, db_session, tracking, course, enrollment):
        """Test completing one of three lessons stores 33.3%."""
        lesson = course.lessons[0]
        result = await tracking.complete_lesson(db_session, enrollment.id, lesson.id)

        assert result.is_completed is True
        assert result.newly_completed is True
        assert result.course_progress.percentage == Decimal("33.3")
        assert enrollment.progress_percentage == Decimal("33.3")
        assert enrollment.started_at is not None
        assert enrollment.last_lesson_id == lesson.id
        assert enrollment.status == EnrollmentStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_complete_lesson_is_idempotent(self, db_session, tracking, course, enrollment):
        lesson = course.lessons[0]
        await tracking.complete_lesson(db_session, enrollment.id, lesson.id)
        again = await tracking.complete_lesson(db_session, enrollment.id, lesson.id)

        assert again.newly_completed is False
        assert again.course_progress is None
        assert enrollment.progress_percentage == Decimal("33.3")
        assert len(await events_named(db_session, EventName.LESSON_COMPLETED)) == 1

    @pytest.mark.asyncio
    async def test_all_lessons_complete_the_enrollment(self, db_session, dispatcher, tracking, course, enrollment):
        """Test the last lesson completes the enrollment exactly once."""
        completed_events = []
        dispatcher.subscribe(EventName.ENROLLMENT_COMPLETED, completed_events.append)

        for lesson in course.lessons:
            result = await tracking.complete_lesson(db_session, enrollment.id, lesson.id)

        assert result.course_progress.percentage == Decimal("100.0")
        assert result.course_progress.newly_completed is True
        assert enrollment.status == EnrollmentStatus.COMPLETED
        assert enrollment.completed_at is not None
        assert len(completed_events) == 1
        assert completed_events[0].payload["strategy"] == "lesson_based"

    @pytest.mark.asyncio
    async def test_course_started_recorded_once(self, db_session, tracking, course, enrollment):
        await tracking.complete_lesson(db_session, enrollment.id, course.lessons[0].id)
        await tracking.complete_lesson(db_session, enrollment.id, course.lessons[1].id)

        assert len(await events_named(db_session, EventName.COURSE_STARTED)) == 1

    @pytest.mark.asyncio
    async def test_lesson_from_another_course(self, db_session, tracking, enrollment):
        other = Course(title="Other", status=CourseStatus.PUBLISHED, lessons=[Lesson(title="Elsewhere")])
        db_session.add(other)
        await db_session.commit()

        with pytest.raises(NotFoundError):
            await tracking.complete_lesson(db_session, enrollment.id, other.lessons[0].id)

    @pytest.mark.asyncio
    async def test_dropped_enrollment_cannot_track(self, db_session, tracking, course, enrollment):
        enrollment.status = EnrollmentStatus.DROPPED
        await db_session.commit()

        with pytest.raises(InvalidTransitionError):
            await tracking.update_progress(
                db_session, enrollment.id, course.lessons[0].id, ProgressUpdate(current_page=1, total_pages=2)
            )

    @pytest.mark.asyncio
    async def test_unknown_enrollment(self, db_session, tracking, course):
        with pytest.raises(NotFoundError):
            await tracking.complete_lesson(db_session, 404, course.lessons[0].id)


# ==========================================
# Page and media tracking
# ==========================================

class TestViewerProgress:

    @pytest.mark.asyncio
    async def test_pages_complete_on_last_page(self, db_session, tracking, course, enrollment):
        """Test the highest page never decreases and the last page completes."""
        lesson = course.lessons[2]

        result = await tracking.update_progress(
            db_session, enrollment.id, lesson.id,
            ProgressUpdate(current_page=4, total_pages=10, time_spent_seconds=60),
        )
        assert result.highest_page_reached == 4
        assert result.is_completed is False

        result = await tracking.update_progress(
            db_session, enrollment.id, lesson.id,
            ProgressUpdate(current_page=2, time_spent_seconds=30),
        )
        assert result.highest_page_reached == 4
        assert result.time_spent_seconds == 90

        result = await tracking.update_progress(
            db_session, enrollment.id, lesson.id, ProgressUpdate(current_page=10),
        )
        assert result.is_completed is True
        assert result.newly_completed is True
        assert result.course_progress.percentage == Decimal("33.3")

    @pytest.mark.asyncio
    async def test_page_threshold(self, db_session, course_progress, dispatcher, course, enrollment):
        """Test an 80% page threshold completes at page 8 of 10."""
        tracking = ProgressTrackingService(course_progress, dispatcher, page_threshold=Decimal("0.8"))

        result = await tracking.update_progress(
            db_session, enrollment.id, course.lessons[2].id, ProgressUpdate(current_page=8, total_pages=10),
        )
        assert result.is_completed is True

    @pytest.mark.asyncio
    async def test_media_threshold(self, db_session, tracking, course, enrollment):
        """Test a video completes at 90% of its duration."""
        lesson = course.lessons[1]

        result = await tracking.update_progress(
            db_session, enrollment.id, lesson.id,
            ProgressUpdate(media_position_seconds=89, media_duration_seconds=100),
        )
        assert result.media_progress_percentage == Decimal("89.00")
        assert result.is_completed is False

        result = await tracking.update_progress(
            db_session, enrollment.id, lesson.id, ProgressUpdate(media_position_seconds=90),
        )
        assert result.media_progress_percentage == Decimal("90.00")
        assert result.is_completed is True

    @pytest.mark.asyncio
    async def test_completed_lesson_stays_completed(self, db_session, tracking, course, enrollment):
        """Test rewinding a finished video does not reopen the lesson."""
        lesson = course.lessons[1]
        await tracking.update_progress(
            db_session, enrollment.id, lesson.id,
            ProgressUpdate(media_position_seconds=100, media_duration_seconds=100),
        )
        result = await tracking.update_progress(
            db_session, enrollment.id, lesson.id, ProgressUpdate(media_position_seconds=5),
        )

        assert result.is_completed is True
        assert result.newly_completed is False

    def test_required_pages(self, tracking):
        assert tracking.required_pages(10) == 10
        assert tracking.required_pages(1) == 1

    def test_invalid_page_update(self):
        with pytest.raises(ValueError):
            ProgressUpdate(current_page=5, total_pages=4)


# ==========================================
# Course progress recalculation
# ==========================================

class TestCourseProgress:

    async def _complete_lessons(self, db_session, count, enrollment, course):
        for lesson in course.lessons[:count]:
            db_session.add(LessonProgress(
                enrollment_id=enrollment.id, lesson_id=lesson.id, is_completed=True,
            ))
        await db_session.commit()

    @pytest.mark.asyncio
    async def test_recalculate_is_idempotent(self, db_session, course_progress, course, enrollment):
        await self._complete_lessons(db_session, 2, enrollment, course)

        first = await course_progress.recalculate_course_progress(db_session, enrollment.id)
        second = await course_progress.recalculate_course_progress(db_session, enrollment.id)

        assert first.percentage == second.percentage == Decimal("66.7")

    @pytest.mark.asyncio
    async def test_soft_deleted_lessons_do_not_count(self, db_session, course_progress, course, enrollment):
        """Test deleting an unfinished lesson raises the percentage."""
        await self._complete_lessons(db_session, 1, enrollment, course)
        course.lessons[2].soft_delete()
        await db_session.commit()

        result = await course_progress.recalculate_course_progress(db_session, enrollment.id)

        assert result.lessons_total == 2
        assert result.percentage == Decimal("50.0")

    @pytest.mark.asyncio
    async def test_completion_is_sticky(self, db_session, course_progress, course, enrollment):
        """Test a new lesson lowers the percentage but keeps the enrollment completed."""
        await self._complete_lessons(db_session, 3, enrollment, course)
        await course_progress.recalculate_course_progress(db_session, enrollment.id)
        assert enrollment.status == EnrollmentStatus.COMPLETED

        db_session.add(Lesson(course_id=course.id, title="Appendix", position=3))
        await db_session.commit()

        result = await course_progress.recalculate_course_progress(db_session, enrollment.id)

        assert result.percentage == Decimal("75.0")
        assert result.newly_completed is False
        assert enrollment.status == EnrollmentStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_auto_complete_disabled(self, db_session, dispatcher, course, enrollment):
        service = CourseProgressService(ProgressCalculatorFactory(), dispatcher, auto_complete=False)
        await self._complete_lessons(db_session, 3, enrollment, course)

        result = await service.recalculate_course_progress(db_session, enrollment.id)

        assert result.is_complete is True
        assert enrollment.status == EnrollmentStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_assessment_inclusive_course(self, db_session, course_progress, learner, course, enrollment):
        """Test required assessments hold back completion until passed."""
        course.progress_calculator_type = "assessment_inclusive"
        assessment = Assessment(
            course_id=course.id, title="Final", is_required=True, status=AssessmentStatus.PUBLISHED,
        )
        db_session.add(assessment)
        await db_session.commit()
        await self._complete_lessons(db_session, 3, enrollment, course)

        result = await course_progress.recalculate_course_progress(db_session, enrollment.id)
        assert result.strategy == "assessment_inclusive"
        assert result.percentage == Decimal("70.0")
        assert enrollment.status == EnrollmentStatus.ACTIVE

        db_session.add(AssessmentAttempt(
            assessment_id=assessment.id, user_id=learner.id, attempt_number=1,
            status=AttemptStatus.GRADED, passed=True,
        ))
        await db_session.commit()

        result = await course_progress.recalculate_course_progress(db_session, enrollment.id)
        assert result.percentage == Decimal("100.0")
        assert enrollment.status == EnrollmentStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_progress_report_is_read_only(self, db_session, course_progress, course, enrollment):
        await self._complete_lessons(db_session, 1, enrollment, course)

        report = await course_progress.progress_report(db_session, enrollment.id)

        assert report.percentage == Decimal("33.3")
        assert report.assessments.total == 0
        assert enrollment.progress_percentage == Decimal("0")

    @pytest.mark.asyncio
    async def test_recalculate_for_course(self, db_session, course_progress, learner, course, enrollment):
        other_user = User(email="other@test.com", full_name="Other Learner")
        db_session.add(other_user)
        await db_session.commit()
        dropped = Enrollment(user_id=other_user.id, course_id=course.id, status=EnrollmentStatus.DROPPED)
        db_session.add(dropped)
        await db_session.commit()
        await self._complete_lessons(db_session, 1, enrollment, course)

        results = await course_progress.recalculate_for_course(db_session, course_id=course.id)

        assert [r.enrollment_id for r in results] == [enrollment.id]
        assert results[0].percentage == Decimal("33.3")

    @pytest.mark.asyncio
    async def test_calculator_reads_enrollment_directly(self, db_session, course, enrollment):
        calculator = ProgressCalculatorFactory().for_course(course)
        await self._complete_lessons(db_session, 3, enrollment, course)

        assert await calculator.calculate(db_session, enrollment) == Decimal("100.0")
        assert await calculator.is_complete(db_session, enrollment) is True

    @pytest.mark.asyncio
    async def test_required_set_skips_drafts_and_optional(self, db_session, course_progress, learner, course, enrollment):
        """Test only published required assessments gate completion, and a late pass counts."""
        course.progress_calculator_type = "assessment_inclusive"
        final = Assessment(
            course_id=course.id, title="Final", is_required=True, status=AssessmentStatus.PUBLISHED,
        )
        draft = Assessment(
            course_id=course.id, title="Unreleased", is_required=True, status=AssessmentStatus.DRAFT,
        )
        practice = Assessment(
            course_id=course.id, title="Practice", is_required=False, status=AssessmentStatus.PUBLISHED,
        )
        db_session.add_all([final, draft, practice])
        await db_session.commit()

        db_session.add_all([
            AssessmentAttempt(
                assessment_id=final.id, user_id=learner.id, attempt_number=1,
                status=AttemptStatus.GRADED, passed=False,
            ),
            AssessmentAttempt(
                assessment_id=final.id, user_id=learner.id, attempt_number=2,
                status=AttemptStatus.GRADED, passed=True,
            ),
            AssessmentAttempt(
                assessment_id=practice.id, user_id=learner.id, attempt_number=1,
                status=AttemptStatus.GRADED, passed=False,
            ),
        ])
        await db_session.commit()
        await self._complete_lessons(db_session, 3, enrollment, course)

        result = await course_progress.recalculate_course_progress(db_session, enrollment.id)

        assert result.percentage == Decimal("100.0")
        assert result.is_complete is True
        assert enrollment.status == EnrollmentStatus.COMPLETED

        stats = await course_progress.assessment_stats(db_session, enrollment.id)
        assert stats.total == 2
        assert stats.passed == 1
        assert stats.pending == 1
        assert (stats.required_total, stats.required_passed) == (1, 1)

    @pytest.mark.asyncio
    async def test_repeated_passes_count_once(self, db_session, learner, course, recwarn):
        quiz = Assessment(course_id=course.id, title="Quiz", status=AssessmentStatus.PUBLISHED)
        db_session.add(quiz)
        await db_session.commit()
        db_session.add_all([
            AssessmentAttempt(
                assessment_id=quiz.id, user_id=learner.id, attempt_number=n,
                status=AttemptStatus.GRADED, passed=True,
            )
            for n in (1, 2)
        ])
        await db_session.commit()

        assert await passed_assessment_ids(db_session, learner.id, [quiz.id]) == [quiz.id]
        assert not [w for w in recwarn if issubclass(w.category, SAWarning)]
