"""
lms/services/attempt_service.py
Attempt lifecycle: start, submit, manual grading, completion

Score aggregation:
- max_score = sum of points of every question in the assessment
- score = sum of answer scores (ungraded / unanswered count as 0)
- percentage = score / max_score * 100, ROUND_HALF_UP to 2dp (0 if max_score is 0)
- passed = percentage >= passing_score
- submitted → graded once every answer on the attempt has a score

Every mutating call runs in one transaction with the attempt row locked
(SELECT ... FOR UPDATE) and publishes its domain events after commit.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from lms.core.db_types import quantize, QUANTIZER_2DP
from lms.core.transaction import committing
from lms.exceptions import NotFoundError, ValidationFailureError
from lms.orm.assessment import Assessment, Question
from lms.orm.assessment_attempt import AssessmentAttempt, AttemptAnswer, AttemptStatus
from lms.schemas.assessment import AnswerSubmission, ManualGrade
from lms.services.attempt_eligibility import AttemptEligibilityChecker
from lms.services.event_dispatcher import DomainEvent, EventDispatcher, EventName
from lms.services.grading_engine import GradingEngine, decode_answer, encode_answer
from lms.state_machines.attempt_state import AttemptStateMachine

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class AttemptScore:
    score: Decimal
    max_score: Decimal
    percentage: Decimal
    passed: bool
    fully_graded: bool


def compute_attempt_score(
    question_points: Iterable[int],
    answer_scores: Iterable[Optional[Decimal]],
    passing_score: int,
) -> AttemptScore:
    """Pure aggregation over question points and per-answer scores."""
    answer_scores = list(answer_scores)
    max_score = sum((Decimal(points) for points in question_points), Decimal("0"))
    score = sum((Decimal(s) for s in answer_scores if s is not None), Decimal("0"))

    if max_score > 0:
        percentage = quantize(score * HUNDRED / max_score, QUANTIZER_2DP)
    else:
        percentage = quantize(Decimal("0"), QUANTIZER_2DP)

    return AttemptScore(
        score=quantize(score, QUANTIZER_2DP),
        max_score=quantize(max_score, QUANTIZER_2DP),
        percentage=percentage,
        passed=percentage >= Decimal(passing_score),
        fully_graded=all(s is not None for s in answer_scores),
    )


class AttemptAggregator:
    """Writes the aggregated score onto an attempt and decides graded status."""

    def __init__(self, dispatcher: Optional[EventDispatcher] = None):
        self.dispatcher = dispatcher

    async def calculate_score(
        self,
        db: AsyncSession,
        attempt: AssessmentAttempt,
        assessment: Assessment,
        actor_id: Optional[int] = None,
    ) -> AttemptScore:
        """
        Recompute score, max_score, percentage and passed; idempotent.

        The first move to graded records attempt.graded. Later changes to
        the score or the pass result of a graded or completed attempt
        record attempt.rescored.

        Returns:
            The computed AttemptScore.
        """
        result = compute_attempt_score(
            (question.points for question in assessment.questions),
            (answer.score for answer in attempt.answers),
            assessment.passing_score,
        )
        was_scored = AttemptStatus(attempt.status) in (AttemptStatus.GRADED, AttemptStatus.COMPLETED)
        changed = attempt.score != result.score or attempt.passed != result.passed

        attempt.score = result.score
        attempt.max_score = result.max_score
        attempt.percentage = result.percentage
        attempt.passed = result.passed

        event_name = None
        if AttemptStatus(attempt.status) == AttemptStatus.SUBMITTED and result.fully_graded:
            AttemptStateMachine(attempt).transition_to(AttemptStatus.GRADED)
            if actor_id is not None:
                attempt.graded_by = actor_id
            logger.info(
                f"Attempt {attempt.id} graded: {result.score}/{result.max_score} "
                f"({result.percentage}%) passed={result.passed}"
            )
            event_name = EventName.ATTEMPT_GRADED
        elif was_scored and changed:
            logger.info(
                f"Attempt {attempt.id} rescored: {result.score}/{result.max_score} "
                f"({result.percentage}%) passed={result.passed}"
            )
            event_name = EventName.ATTEMPT_RESCORED

        if event_name is not None and self.dispatcher is not None:
            await self.dispatcher.record(db, DomainEvent(
                name=event_name,
                aggregate_type="assessment_attempt",
                aggregate_id=attempt.id,
                actor_id=actor_id,
                payload={
                    "assessment_id": attempt.assessment_id,
                    "course_id": assessment.course_id,
                    "user_id": attempt.user_id,
                    "attempt_number": attempt.attempt_number,
                    "score": str(result.score),
                    "max_score": str(result.max_score),
                    "percentage": str(result.percentage),
                    "passed": result.passed,
                },
            ))
        return result


class AttemptService:

    def __init__(
        self,
        eligibility: AttemptEligibilityChecker,
        grading_engine: GradingEngine,
        dispatcher: EventDispatcher,
    ):
        self.eligibility = eligibility
        self.grading_engine = grading_engine
        self.dispatcher = dispatcher
        self.aggregator = AttemptAggregator(dispatcher)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @staticmethod
    async def load_assessment(db: AsyncSession, assessment_id: int) -> Assessment:
        result = await db.execute(
            select(Assessment)
            .where(Assessment.id == assessment_id)
            .options(selectinload(Assessment.questions).selectinload(Question.options))
            .execution_options(populate_existing=True)
        )
        assessment = result.scalar_one_or_none()
        if assessment is None:
            raise NotFoundError("Assessment", assessment_id)
        return assessment

    @staticmethod
    async def load_attempt(db: AsyncSession, attempt_id: int, lock: bool = True) -> AssessmentAttempt:
        query = (
            select(AssessmentAttempt)
            .where(AssessmentAttempt.id == attempt_id)
            .options(selectinload(AssessmentAttempt.answers))
            .execution_options(populate_existing=True)
        )
        if lock:
            query = query.with_for_update()
        result = await db.execute(query)
        attempt = result.scalar_one_or_none()
        if attempt is None:
            raise NotFoundError("AssessmentAttempt", attempt_id)
        return attempt

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def start_attempt(self, db: AsyncSession, assessment_id: int, user_id: int) -> AssessmentAttempt:
        """
        Start a new attempt after the eligibility rules pass.

        The learner's enrollment row is locked first so concurrent starts
        cannot both take the same attempt_number.
        
        Raises:
            NotFoundError: assessment does not exist
            IneligibleAttemptError / MaxAttemptsReachedError: a rule failed
        """
        async with committing(db, self.dispatcher):
            assessment = await self.load_assessment(db, assessment_id)
            await self.eligibility.lock_enrollment(db, assessment.course_id, user_id)
            decision = await self.eligibility.ensure_eligible(db, assessment, user_id)

            attempt = AssessmentAttempt(
                assessment_id=assessment.id,
                user_id=user_id,
                attempt_number=decision.next_attempt_number,
                status=AttemptStatus.IN_PROGRESS,
                started_at=datetime.utcnow(),
            )
            db.add(attempt)
            await db.flush()

        logger.info(
            f"User {user_id} started attempt #{attempt.attempt_number} "
            f"on assessment {assessment_id} (attempt {attempt.id})"
        )
        return attempt

    async def submit_answers(
        self,
        db: AsyncSession,
        attempt_id: int,
        answers: List[AnswerSubmission],
    ) -> AssessmentAttempt:
        """
        Store answers, auto-grade objective questions and submit the attempt.

        Questions left out of the submission simply have no answer row.
        
        Args:
            db: Database session
            attempt_id: Attempt to submit, must be in_progress
            answers: One entry per answered question
        
        Returns:
            The attempt, now submitted (or graded if nothing needs a human)
        
        Raises:
            InvalidTransitionError: attempt is not in_progress
            ValidationFailureError: unknown or duplicated question id
        """
        async with committing(db, self.dispatcher):
            attempt = await self.load_attempt(db, attempt_id)
            machine = AttemptStateMachine(attempt)
            machine.ensure_state(AttemptStatus.IN_PROGRESS, action="submit")

            assessment = await self.load_assessment(db, attempt.assessment_id)
            questions = {question.id: question for question in assessment.questions}
            self._validate_submission(attempt, answers, questions)

            existing = {answer.question_id: answer for answer in attempt.answers}
            for submission in answers:
                question = questions[submission.question_id]
                answer = existing.get(question.id)
                if answer is None:
                    answer = AttemptAnswer(question_id=question.id)
                    attempt.answers.append(answer)

                answer.answer_text = encode_answer(submission.answer)
                answer.file_path = submission.file_path
                self._apply_auto_grade(answer, question, submission.answer)

            machine.transition_to(AttemptStatus.SUBMITTED)
            await db.flush()
            await self.aggregator.calculate_score(db, attempt, assessment)

        logger.info(
            f"Attempt {attempt.id} submitted with {len(answers)} answers, status={attempt.status.value}"
        )
        return attempt

    async def grade_answer(
        self,
        db: AsyncSession,
        answer_id: int,
        score: Decimal,
        grader_id: int,
        feedback: Optional[str] = None,
    ) -> AssessmentAttempt:
        """
        Record a human grade for one answer and re-aggregate the attempt.
        
        Raises:
            NotFoundError: answer does not exist
            InvalidTransitionError: attempt is not submitted or graded
            ValidationFailureError: score outside [0, question points]
        """
        result = await db.execute(select(AttemptAnswer.attempt_id).where(AttemptAnswer.id == answer_id))
        attempt_id = result.scalar_one_or_none()
        if attempt_id is None:
            raise NotFoundError("AttemptAnswer", answer_id)

        return await self.grade_answers(
            db,
            attempt_id,
            [ManualGrade(answer_id=answer_id, score=score, feedback=feedback)],
            grader_id,
        )

    async def grade_answers(
        self,
        db: AsyncSession,
        attempt_id: int,
        grades: List[ManualGrade],
        grader_id: int,
    ) -> AssessmentAttempt:
        """
        Bulk manual grading. Every grade is validated before any is applied.
        
        Raises:
            InvalidTransitionError: attempt is not submitted or graded
            ValidationFailureError: empty list, duplicate or foreign answer,
                score outside [0, question points]
        """
        async with committing(db, self.dispatcher):
            attempt = await self.load_attempt(db, attempt_id)
            AttemptStateMachine(attempt).ensure_state(*AttemptStateMachine.GRADABLE_STATES, action="grade")

            assessment = await self.load_assessment(db, attempt.assessment_id)
            questions = {question.id: question for question in assessment.questions}
            answers = {answer.id: answer for answer in attempt.answers}
            self._validate_grades(attempt, grades, answers, questions)

            now = datetime.utcnow()
            for grade in grades:
                answer = answers[grade.answer_id]
                answer.score = grade.score
                answer.feedback = grade.feedback
                answer.graded_by = grader_id
                answer.graded_at = now

            await db.flush()
            await self.aggregator.calculate_score(db, attempt, assessment, actor_id=grader_id)

        logger.info(
            f"Grader {grader_id} graded {len(grades)} answers on attempt {attempt.id}, "
            f"status={attempt.status.value}"
        )
        return attempt

    async def complete_attempt(self, db: AsyncSession, attempt_id: int) -> AssessmentAttempt:
        """graded → completed"""
        async with committing(db, self.dispatcher):
            attempt = await self.load_attempt(db, attempt_id)
            AttemptStateMachine(attempt).transition_to(AttemptStatus.COMPLETED)
        return attempt

    async def regrade_attempt(self, db: AsyncSession, attempt_id: int) -> AssessmentAttempt:
        """
        Re-run automatic grading on stored answers and re-aggregate.

        Used after an answer key is corrected. Human grades are kept.
        """
        async with committing(db, self.dispatcher):
            attempt = await self.load_attempt(db, attempt_id)
            AttemptStateMachine(attempt).ensure_state(
                AttemptStatus.SUBMITTED, AttemptStatus.GRADED, AttemptStatus.COMPLETED,
                action="regrade",
            )
            assessment = await self.load_assessment(db, attempt.assessment_id)
            questions = {question.id: question for question in assessment.questions}

            for answer in attempt.answers:
                question = questions.get(answer.question_id)
                if question is None or not question.is_auto_gradable:
                    continue
                self._apply_auto_grade(
                    answer, question, decode_answer(question.question_type, answer.answer_text)
                )

            await db.flush()
            await self.aggregator.calculate_score(db, attempt, assessment)

        logger.info(f"Attempt {attempt.id} regraded: {attempt.score}/{attempt.max_score}")
        return attempt

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _apply_auto_grade(self, answer: AttemptAnswer, question: Question, value) -> None:
        if not question.is_auto_gradable:
            answer.is_correct = None
            answer.score = None
            return
        result = self.grading_engine.grade(question, value)
        answer.is_correct = result.is_correct
        answer.score = result.score
        answer.feedback = result.feedback
        answer.graded_at = datetime.utcnow()

    @staticmethod
    def _validate_submission(
        attempt: AssessmentAttempt,
        answers: List[AnswerSubmission],
        questions: Dict[int, Question],
    ) -> None:
        seen = set()
        for submission in answers:
            if submission.question_id not in questions:
                raise ValidationFailureError(
                    f"Question {submission.question_id} does not belong to assessment {attempt.assessment_id}",
                    field="question_id",
                    question_id=submission.question_id,
                    attempt_id=attempt.id,
                )
            if submission.question_id in seen:
                raise ValidationFailureError(
                    f"Question {submission.question_id} answered more than once",
                    field="question_id",
                    question_id=submission.question_id,
                    attempt_id=attempt.id,
                )
            seen.add(submission.question_id)

    @staticmethod
    def _validate_grades(
        attempt: AssessmentAttempt,
        grades: List[ManualGrade],
        answers: Dict[int, AttemptAnswer],
        questions: Dict[int, Question],
    ) -> None:
        if not grades:
            raise ValidationFailureError("No grades given", field="grades", attempt_id=attempt.id)

        seen = set()
        for grade in grades:
            answer = answers.get(grade.answer_id)
            if answer is None:
                raise ValidationFailureError(
                    f"Answer {grade.answer_id} does not belong to attempt {attempt.id}",
                    field="answer_id",
                    answer_id=grade.answer_id,
                )
            if grade.answer_id in seen:
                raise ValidationFailureError(
                    f"Answer {grade.answer_id} graded more than once",
                    field="answer_id",
                    answer_id=grade.answer_id,
                )
            seen.add(grade.answer_id)

            points = questions[answer.question_id].points
            if grade.score < 0 or grade.score > points:
                raise ValidationFailureError(
                    f"Score {grade.score} outside 0..{points} for answer {grade.answer_id}",
                    field="score",
                    answer_id=grade.answer_id,
                    max_points=points,
                )
