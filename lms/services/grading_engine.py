"""
lms/services/grading_engine.py
Automatic scoring of a single submitted answer

One GradingStrategy per QuestionType. The resolver refuses to start if
any question type is left without a strategy, so a new type cannot be
added without deciding how it is graded.

Scoring rules (no partial credit anywhere):
- multiple_choice: selected option ids == ids of options flagged correct
- matching: submitted {option_id: definition} == every option's match_text
- true_false: "true" / "benar" are true, anything else false
- short_answer: case-insensitive trimmed match against accepted answers
- essay / file_upload: left for a human grader (is_correct and score None)

CRITICAL: Pure. Never touches the database or mutates the question.
"""
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Set

from lms.orm.assessment import Question, QuestionType

logger = logging.getLogger(__name__)

TRUTHY_TOKENS = frozenset({"true", "benar"})


@dataclass(frozen=True)
class GradingResult:
    is_correct: Optional[bool]
    score: Optional[Decimal]
    feedback: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.score is None

    @classmethod
    def correct(cls, points: int, feedback: str = "Correct answer") -> "GradingResult":
        return cls(is_correct=True, score=Decimal(points), feedback=feedback)

    @classmethod
    def incorrect(cls, feedback: str = "Incorrect answer") -> "GradingResult":
        return cls(is_correct=False, score=Decimal("0"), feedback=feedback)

    @classmethod
    def pending(cls) -> "GradingResult":
        return cls(is_correct=None, score=None, feedback=None)


class GradingStrategy(ABC):
    """Scores answers for the question types it handles."""

    handled_types: Iterable[QuestionType] = ()

    @abstractmethod
    def grade(self, question: Question, answer: Any) -> GradingResult:
        ...


class MultipleChoiceGradingStrategy(GradingStrategy):
    handled_types = (QuestionType.MULTIPLE_CHOICE,)

    def grade(self, question: Question, answer: Any) -> GradingResult:
        selected = _option_id_set(answer)
        expected = {option.id for option in question.options if option.is_correct}

        if selected is None or not expected:
            return GradingResult.incorrect()
        if selected == expected:
            return GradingResult.correct(question.points)
        return GradingResult.incorrect()


class MatchingGradingStrategy(GradingStrategy):
    handled_types = (QuestionType.MATCHING,)

    def grade(self, question: Question, answer: Any) -> GradingResult:
        expected = {
            option.id: option.match_text.strip()
            for option in question.options
            if option.match_text is not None
        }
        submitted = _matching_pairs(answer)

        if submitted is None or not expected:
            return GradingResult.incorrect()
        if submitted == expected:
            return GradingResult.correct(question.points)
        return GradingResult.incorrect()


class TrueFalseGradingStrategy(GradingStrategy):
    handled_types = (QuestionType.TRUE_FALSE,)

    def grade(self, question: Question, answer: Any) -> GradingResult:
        if answer is None:
            return GradingResult.incorrect("No answer given")
        if normalize_truth(answer) == self.correct_truth_value(question):
            return GradingResult.correct(question.points)
        return GradingResult.incorrect()

    @staticmethod
    def correct_truth_value(question: Question) -> bool:
        """Correct option's text, else question.correct_answer, else True."""
        for option in question.options:
            if option.is_correct:
                return normalize_truth(option.option_text)
        if question.correct_answer is not None and question.correct_answer.strip():
            return normalize_truth(question.correct_answer)
        return True


class ShortAnswerGradingStrategy(GradingStrategy):
    handled_types = (QuestionType.SHORT_ANSWER,)

    def grade(self, question: Question, answer: Any) -> GradingResult:
        text = "" if answer is None else str(answer).strip()
        if not text:
            return GradingResult.incorrect("No answer given")

        accepted = self.accepted_answers(question)
        if not accepted:
            logger.warning(f"Question {question.id} has no accepted answers; marking incorrect")
            return GradingResult.incorrect()

        if text.lower() in {value.lower() for value in accepted}:
            return GradingResult.correct(question.points)
        return GradingResult.incorrect()

    @staticmethod
    def accepted_answers(question: Question) -> List[str]:
        accepted: List[str] = []
        if question.correct_answer:
            accepted.extend(part.strip() for part in question.correct_answer.split(","))
        accepted.extend(option.option_text.strip() for option in question.options if option.is_correct)
        return [value for value in dict.fromkeys(accepted) if value]


class ManualGradingStrategy(GradingStrategy):
    handled_types = (QuestionType.ESSAY, QuestionType.FILE_UPLOAD)

    def grade(self, question: Question, answer: Any) -> GradingResult:
        return GradingResult.pending()


class GradingStrategyResolver:
    """
    Maps each QuestionType to exactly one strategy.

    Raises:
        ValueError: if a question type has no strategy or two strategies
    """

    def __init__(self, strategies: Iterable[GradingStrategy]):
        self._by_type: Dict[QuestionType, GradingStrategy] = {}
        for strategy in strategies:
            for question_type in strategy.handled_types:
                if question_type in self._by_type:
                    raise ValueError(f"Duplicate grading strategy for {question_type.value}")
                self._by_type[question_type] = strategy

        missing = [qt.value for qt in QuestionType if qt not in self._by_type]
        if missing:
            raise ValueError(f"No grading strategy for question types: {', '.join(missing)}")

    def resolve(self, question_type: QuestionType) -> GradingStrategy:
        return self._by_type[QuestionType(question_type)]

    @property
    def supported_types(self) -> List[QuestionType]:
        return list(self._by_type)


def default_strategies() -> List[GradingStrategy]:
    return [
        MultipleChoiceGradingStrategy(),
        MatchingGradingStrategy(),
        TrueFalseGradingStrategy(),
        ShortAnswerGradingStrategy(),
        ManualGradingStrategy(),
    ]


class GradingEngine:
    """Entry point used by the attempt service."""

    def __init__(self, resolver: Optional[GradingStrategyResolver] = None):
        self.resolver = resolver or GradingStrategyResolver(default_strategies())

    def grade(self, question: Question, answer: Any) -> GradingResult:
        strategy = self.resolver.resolve(question.question_type)
        return strategy.grade(question, answer)


def normalize_truth(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in TRUTHY_TOKENS


def encode_answer(answer: Any) -> Optional[str]:
    """Serialize a submitted answer for AttemptAnswer.answer_text."""
    if answer is None:
        return None
    if isinstance(answer, (list, dict)):
        return json.dumps(answer, sort_keys=True)
    if isinstance(answer, bool):
        return "true" if answer else "false"
    return str(answer)


def decode_answer(question_type: QuestionType, answer_text: Optional[str]) -> Any:
    """Inverse of encode_answer, used when regrading stored answers."""
    if answer_text is None:
        return None
    if QuestionType(question_type) in (QuestionType.MULTIPLE_CHOICE, QuestionType.MATCHING):
        try:
            return json.loads(answer_text)
        except json.JSONDecodeError:
            return answer_text
    return answer_text


def _option_id_set(answer: Any) -> Optional[Set[int]]:
    if answer is None:
        return None
    values = answer if isinstance(answer, (list, tuple, set)) else [answer]
    if any(isinstance(value, bool) for value in values):
        return None
    try:
        return {int(value) for value in values}
    except (TypeError, ValueError):
        return None


def _matching_pairs(answer: Any) -> Optional[Dict[int, str]]:
    if not isinstance(answer, dict):
        return None
    try:
        return {int(key): str(value).strip() for key, value in answer.items()}
    except (TypeError, ValueError):
        return None
