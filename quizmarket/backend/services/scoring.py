"""
QuizMarket Attempt Service
Scoring engine for quiz attempts

Questions are converted into one of three gradable shapes and graded by a
function registered per shape:

- ``MultipleChoice``: answer is an option index (single correct) or a list of
  indexes (multiple correct) into the attempt's snapshotted option order.
- ``TrueFalse``: answer is a boolean.
- ``ShortDescription``: never auto-graded, always pending manual review.

Only auto-gradable questions count toward ``max_score``. Negative marking
applies to answered-but-wrong questions, never to blank ones.
"""

import enum
from dataclasses import dataclass, field
from functools import singledispatch
from typing import Any, FrozenSet, List, Mapping, Optional, Sequence, Tuple, Union


@dataclass(frozen=True)
class ChoiceOption:
    id: int
    is_correct: bool


@dataclass(frozen=True)
class MultipleChoice:
    id: int
    points: float
    options: Tuple[ChoiceOption, ...]
    multiple_correct: bool = False

    @property
    def correct_indexes(self) -> FrozenSet[int]:
        return frozenset(i for i, option in enumerate(self.options) if option.is_correct)


@dataclass(frozen=True)
class TrueFalse:
    id: int
    points: float
    correct_boolean: Optional[bool]


@dataclass(frozen=True)
class ShortDescription:
    id: int
    points: float


GradableQuestion = Union[MultipleChoice, TrueFalse, ShortDescription]


class Verdict(enum.Enum):
    CORRECT = "correct"
    INCORRECT = "incorrect"
    UNANSWERED = "unanswered"
    PENDING = "pending"


@dataclass(frozen=True)
class QuestionResult:
    question_id: int
    verdict: Verdict
    points_awarded: float = 0.0
    penalty: float = 0.0
    selected_option_ids: Tuple[int, ...] = ()
    answer: Any = None

    @property
    def is_correct(self) -> bool:
        return self.verdict is Verdict.CORRECT


@dataclass
class ScoreSummary:
    results: List[QuestionResult] = field(default_factory=list)
    correct_answers: int = 0
    incorrect_answers: int = 0
    pending_answers: int = 0
    earned_points: float = 0.0
    penalty_points: float = 0.0
    max_score: float = 0.0
    score: float = 0.0


def answer_provided(value: Any) -> bool:
    """A blank answer is None, an empty string or a collection of blanks"""
    if isinstance(value, (list, tuple, set)):
        return any(answer_provided(item) for item in value)
    if isinstance(value, str):
        return value.strip() != ""
    return value is not None


def _as_index(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.lstrip("-").isdigit():
            return int(stripped)
    return None


def _as_boolean(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes"):
            return True
        if lowered in ("false", "0", "no"):
            return False
    return None


def _wrong(question_id: int, penalty: float, **kwargs) -> QuestionResult:
    return QuestionResult(question_id, Verdict.INCORRECT, penalty=penalty, **kwargs)


@singledispatch
def grade_question(question: Any, value: Any, penalty: float) -> QuestionResult:
    """Grade one answer; ``penalty`` is deducted only for answered-but-wrong"""
    raise TypeError(f"Unsupported question shape: {type(question).__name__}")


@grade_question.register
def _grade_multiple_choice(question: MultipleChoice, value: Any, penalty: float) -> QuestionResult:
    if not answer_provided(value):
        return QuestionResult(question.id, Verdict.UNANSWERED)

    raw = list(value) if isinstance(value, (list, tuple, set)) else [value]
    indexes = []
    for item in raw:
        if not answer_provided(item):
            continue
        index = _as_index(item)
        # A selection that points at no real option is answered and wrong
        if index is None or not 0 <= index < len(question.options):
            return _wrong(question.id, penalty)
        if index not in indexes:
            indexes.append(index)

    selected_ids = tuple(question.options[i].id for i in indexes)
    correct = question.correct_indexes

    if question.multiple_correct:
        is_correct = bool(correct) and set(indexes) == correct
    else:
        is_correct = len(indexes) == 1 and indexes[0] in correct

    answer = sorted(indexes) if question.multiple_correct else indexes[0]
    if is_correct:
        return QuestionResult(
            question.id, Verdict.CORRECT,
            points_awarded=question.points,
            selected_option_ids=selected_ids,
            answer=answer,
        )
    return _wrong(question.id, penalty, selected_option_ids=selected_ids, answer=answer)


@grade_question.register
def _grade_true_false(question: TrueFalse, value: Any, penalty: float) -> QuestionResult:
    if not answer_provided(value):
        return QuestionResult(question.id, Verdict.UNANSWERED)

    chosen = _as_boolean(value)
    if chosen is None:
        return _wrong(question.id, penalty)

    if question.correct_boolean is not None and chosen == question.correct_boolean:
        return QuestionResult(question.id, Verdict.CORRECT, points_awarded=question.points, answer=chosen)
    return _wrong(question.id, penalty, answer=chosen)


@grade_question.register
def _grade_short_description(question: ShortDescription, value: Any, penalty: float) -> QuestionResult:
    text = str(value) if answer_provided(value) else None
    return QuestionResult(question.id, Verdict.PENDING, answer=text)


def score_answers(
    questions: Sequence[GradableQuestion],
    answers: Mapping[str, Any],
    negative_marking: bool = False,
    negative_mark_value: Optional[float] = None,
) -> ScoreSummary:
    """Grade every question against the merged answers map (keys are question ids as strings)"""
    penalty = float(negative_mark_value or 0.0) if negative_marking else 0.0
    summary = ScoreSummary()

    for question in questions:
        result = grade_question(question, answers.get(str(question.id)), penalty)
        summary.results.append(result)

        if result.verdict is Verdict.PENDING:
            summary.pending_answers += 1
            continue

        summary.max_score += question.points
        if result.verdict is Verdict.CORRECT:
            summary.correct_answers += 1
            summary.earned_points += result.points_awarded
        else:
            summary.incorrect_answers += 1
            summary.penalty_points += result.penalty

    if summary.max_score > 0:
        raw = (summary.earned_points - summary.penalty_points) / summary.max_score * 100
        summary.score = round(min(100.0, max(0.0, raw)), 2)

    return summary


__all__ = [
    "ChoiceOption",
    "MultipleChoice",
    "TrueFalse",
    "ShortDescription",
    "GradableQuestion",
    "Verdict",
    "QuestionResult",
    "ScoreSummary",
    "answer_provided",
    "grade_question",
    "score_answers",
]
