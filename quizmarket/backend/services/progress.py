"""
QuizMarket Attempt Service
Structured progress document stored on each quiz attempt
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from .scoring import answer_provided


def normalize_answers(answers: Optional[Mapping[Any, Any]]) -> Dict[str, Any]:
    """Answer keys arrive as ints or strings; they are always stored as strings"""
    if not answers:
        return {}
    return {str(key).strip(): value for key, value in answers.items()}


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None
    return None


@dataclass
class AttemptProgress:
    """
    In-flight state of an attempt.

    Serialized with the camelCase keys the single-page client reads:
    ``answers``, ``answeredQuestions``, ``timeSpent``, ``completionPercentage``,
    ``lastActivityAt``, ``currentQuestionIndex`` and ``totalQuestions``.
    """

    total_questions: int = 0
    answers: Dict[str, Any] = field(default_factory=dict)
    current_question_index: int = 0
    time_spent: int = 0
    last_activity_at: Optional[datetime] = None

    @property
    def answered_questions(self) -> int:
        return sum(1 for value in self.answers.values() if answer_provided(value))

    @property
    def completion_percentage(self) -> float:
        if not self.total_questions:
            return 0.0
        return round(self.answered_questions / self.total_questions * 100, 2)

    def merge_answers(self, answers: Optional[Mapping[Any, Any]]) -> None:
        """Last write wins per question; keys not in ``answers`` are kept"""
        self.answers.update(normalize_answers(answers))

    def record_time(self, seconds: Optional[int]) -> None:
        # Out-of-order or retried requests never move the clock backwards
        if seconds is None:
            return
        self.time_spent = max(self.time_spent, int(seconds))

    def touch(self, now: datetime) -> None:
        self.last_activity_at = now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "answers": dict(self.answers),
            "answeredQuestions": self.answered_questions,
            "timeSpent": self.time_spent,
            "completionPercentage": self.completion_percentage,
            "lastActivityAt": self.last_activity_at.isoformat() if self.last_activity_at else None,
            "currentQuestionIndex": self.current_question_index,
            "totalQuestions": self.total_questions,
        }

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]], total_questions: int = 0) -> "AttemptProgress":
        data = data or {}
        return cls(
            total_questions=total_questions or int(data.get("totalQuestions") or 0),
            answers=normalize_answers(data.get("answers")),
            current_question_index=int(data.get("currentQuestionIndex") or 0),
            time_spent=int(data.get("timeSpent") or 0),
            last_activity_at=_parse_timestamp(data.get("lastActivityAt")),
        )


__all__ = ["AttemptProgress", "normalize_answers"]
