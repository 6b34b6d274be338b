"""
lms/services/progress_calculator.py
Course progress strategies

Strategies:
- lesson_based: completed lessons / lessons, 0 when the course has none
- assessment_inclusive: lesson_weight * lesson share + assessment_weight *
  share of required assessments passed (a missing component counts as full)
- duration_weighted: lessons weighted by estimated_duration_minutes,
  lesson_based when no lesson has a duration

Every strategy first gathers a ProgressSnapshot (plain counts) from the
database and then applies a pure function to it, so the arithmetic can
be tested without a session. Soft-deleted lessons never count.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Type

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from lms.core.db_types import quantize, QUANTIZER_1DP
from lms.orm.assessment import Assessment, AssessmentStatus
from lms.orm.assessment_attempt import AssessmentAttempt
from lms.orm.course import Course, Lesson
from lms.orm.enrollment import Enrollment
from lms.orm.lesson_progress import LessonProgress
from lms.schemas.progress import AssessmentStats

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class ProgressSnapshot:
    lessons_total: int = 0
    lessons_completed: int = 0
    duration_total: int = 0
    duration_completed: int = 0
    required_total: int = 0
    required_passed: int = 0

    @property
    def all_lessons_completed(self) -> bool:
        return self.lessons_completed >= self.lessons_total


# =============================================================================
# Queries
# =============================================================================

def _live_lessons(course_id: int):
    return (Lesson.course_id == course_id, Lesson.deleted_at.is_(None))


async def count_lessons(db: AsyncSession, enrollment: Enrollment) -> Dict[str, int]:
    """Lesson totals and completions, with and without duration weights."""
    totals = await db.execute(
        select(
            func.count(Lesson.id),
            func.coalesce(func.sum(Lesson.estimated_duration_minutes), 0),
        ).where(*_live_lessons(enrollment.course_id))
    )
    lessons_total, duration_total = totals.one()

    completed = await db.execute(
        select(
            func.count(LessonProgress.id),
            func.coalesce(func.sum(Lesson.estimated_duration_minutes), 0),
        )
        .join(Lesson, Lesson.id == LessonProgress.lesson_id)
        .where(
            LessonProgress.enrollment_id == enrollment.id,
            LessonProgress.is_completed.is_(True),
            *_live_lessons(enrollment.course_id),
        )
    )
    lessons_completed, duration_completed = completed.one()

    return {
        "lessons_total": int(lessons_total),
        "lessons_completed": int(lessons_completed),
        "duration_total": int(duration_total),
        "duration_completed": int(duration_completed),
    }


async def passed_assessment_ids(db: AsyncSession, user_id: int, assessment_ids: List[int]) -> List[int]:
    if not assessment_ids:
        return []
    result = await db.execute(
        select(AssessmentAttempt.assessment_id).distinct().where(
            AssessmentAttempt.user_id == user_id,
            AssessmentAttempt.assessment_id.in_(assessment_ids),
            AssessmentAttempt.passed.is_(True),
        )
    )
    return list(result.scalars().all())


async def counted_assessments(db: AsyncSession, course_id: int) -> List[Assessment]:
    """Assessments that count toward progress: everything except drafts."""
    result = await db.execute(
        select(Assessment).where(
            Assessment.course_id == course_id,
            Assessment.status != AssessmentStatus.DRAFT,
        )
    )
    return list(result.scalars().all())


async def assessment_stats(db: AsyncSession, enrollment: Enrollment) -> AssessmentStats:
    """Total / passed / pending / required counts over non-draft assessments."""
    assessments = await counted_assessments(db, enrollment.course_id)
    if not assessments:
        return AssessmentStats()

    passed = set(await passed_assessment_ids(db, enrollment.user_id, [a.id for a in assessments]))
    required = [a for a in assessments if a.is_required]
    return AssessmentStats(
        total=len(assessments),
        passed=len(passed),
        pending=len(assessments) - len(passed),
        required_total=len(required),
        required_passed=sum(1 for a in required if a.id in passed),
    )


# =============================================================================
# Strategies
# =============================================================================

class ProgressCalculator(ABC):
    name: str = ""
    includes_assessments: bool = False

    async def snapshot(self, db: AsyncSession, enrollment: Enrollment) -> ProgressSnapshot:
        counts = await count_lessons(db, enrollment)
        if self.includes_assessments:
            stats = await assessment_stats(db, enrollment)
            counts["required_total"] = stats.required_total
            counts["required_passed"] = stats.required_passed
        return ProgressSnapshot(**counts)

    async def calculate(self, db: AsyncSession, enrollment: Enrollment) -> Decimal:
        return self.compute(await self.snapshot(db, enrollment))

    async def is_complete(self, db: AsyncSession, enrollment: Enrollment) -> bool:
        return self.complete(await self.snapshot(db, enrollment))

    @abstractmethod
    def compute(self, snapshot: ProgressSnapshot) -> Decimal:
        ...

    @abstractmethod
    def complete(self, snapshot: ProgressSnapshot) -> bool:
        ...


class LessonBasedProgressCalculator(ProgressCalculator):
    name = "lesson_based"

    def compute(self, snapshot: ProgressSnapshot) -> Decimal:
        if snapshot.lessons_total == 0:
            return quantize(ZERO, QUANTIZER_1DP)
        return quantize(
            Decimal(snapshot.lessons_completed) * HUNDRED / Decimal(snapshot.lessons_total),
            QUANTIZER_1DP,
        )

    def complete(self, snapshot: ProgressSnapshot) -> bool:
        return snapshot.lessons_total > 0 and snapshot.all_lessons_completed


class AssessmentInclusiveProgressCalculator(ProgressCalculator):
    """
    Blends lesson completion with passing required assessments.

    Weights are percentage points and must add up to 100. A course with
    no lessons gives the full lesson weight; a course with no required
    (non-draft) assessments gives the full assessment weight.
    """
    name = "assessment_inclusive"
    includes_assessments = True

    def __init__(self, lesson_weight: Decimal = Decimal("70"), assessment_weight: Decimal = Decimal("30")):
        lesson_weight = Decimal(lesson_weight)
        assessment_weight = Decimal(assessment_weight)
        if lesson_weight < 0 or assessment_weight < 0:
            raise ValueError("Progress weights cannot be negative")
        if lesson_weight + assessment_weight != HUNDRED:
            raise ValueError(
                f"Progress weights must sum to 100, got {lesson_weight} + {assessment_weight}"
            )
        self.lesson_weight = lesson_weight
        self.assessment_weight = assessment_weight

    def compute(self, snapshot: ProgressSnapshot) -> Decimal:
        if snapshot.lessons_total > 0:
            lesson_share = Decimal(snapshot.lessons_completed) / Decimal(snapshot.lessons_total)
        else:
            lesson_share = Decimal(1)

        if snapshot.required_total > 0:
            assessment_share = Decimal(snapshot.required_passed) / Decimal(snapshot.required_total)
        else:
            assessment_share = Decimal(1)

        percentage = self.lesson_weight * lesson_share + self.assessment_weight * assessment_share
        return quantize(min(HUNDRED, max(ZERO, percentage)), QUANTIZER_1DP)

    def complete(self, snapshot: ProgressSnapshot) -> bool:
        return snapshot.all_lessons_completed and snapshot.required_passed >= snapshot.required_total


class DurationWeightedProgressCalculator(ProgressCalculator):
    name = "duration_weighted"

    def __init__(self):
        self._fallback = LessonBasedProgressCalculator()

    def compute(self, snapshot: ProgressSnapshot) -> Decimal:
        if snapshot.duration_total <= 0:
            return self._fallback.compute(snapshot)
        return quantize(
            Decimal(snapshot.duration_completed) * HUNDRED / Decimal(snapshot.duration_total),
            QUANTIZER_1DP,
        )

    def complete(self, snapshot: ProgressSnapshot) -> bool:
        return self._fallback.complete(snapshot)


# =============================================================================
# Factory
# =============================================================================

class ProgressCalculatorFactory:
    """
    Resolves a strategy by name.

    The course's progress_calculator_type wins over the configured default.
    Unknown names are rejected rather than silently replaced.
    """

    STRATEGIES: Dict[str, Type[ProgressCalculator]] = {
        LessonBasedProgressCalculator.name: LessonBasedProgressCalculator,
        AssessmentInclusiveProgressCalculator.name: AssessmentInclusiveProgressCalculator,
        DurationWeightedProgressCalculator.name: DurationWeightedProgressCalculator,
    }

    ALIASES = {"weighted": DurationWeightedProgressCalculator.name}

    def __init__(
        self,
        default_type: str = LessonBasedProgressCalculator.name,
        lesson_weight: Decimal = Decimal("70"),
        assessment_weight: Decimal = Decimal("30"),
    ):
        self._calculators: Dict[str, ProgressCalculator] = {
            LessonBasedProgressCalculator.name: LessonBasedProgressCalculator(),
            AssessmentInclusiveProgressCalculator.name: AssessmentInclusiveProgressCalculator(
                lesson_weight, assessment_weight
            ),
            DurationWeightedProgressCalculator.name: DurationWeightedProgressCalculator(),
        }
        self.default = self.resolve(default_type)

    @classmethod
    def available_types(cls) -> List[str]:
        return list(cls.STRATEGIES)

    def resolve(self, name: str) -> ProgressCalculator:
        key = self.ALIASES.get(name, name)
        if key not in self._calculators:
            raise ValueError(
                f"Unknown progress calculator '{name}'. Available: {', '.join(self.available_types())}"
            )
        return self._calculators[key]

    def for_course(self, course: Optional[Course]) -> ProgressCalculator:
        if course is not None and course.progress_calculator_type:
            return self.resolve(course.progress_calculator_type)
        return self.default
