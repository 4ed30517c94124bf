"""
QuizMarket Attempt Service
Quiz attempt lifecycle: start, resume, progress, submit and abandon

Attempts move ``in_progress -> completed | abandoned | expired``; every
terminal state is final. Expiry is evaluated lazily when an attempt is
resumed or submitted. Ownership of an ``attempt_id`` is verified by the
security guard before any of these operations are reached, so the engine
only receives the caller as an explicit ``Principal``.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from ..database.models import (
    AttemptAnswer, AttemptStatus, Quiz, QuizAttempt, QuizStatus, UserRole
)
from ..exceptions import (
    AttemptExpiredException,
    AttemptNotFoundException,
    EnrollmentRequiredException,
    InvalidAttemptStateException,
    MaxAttemptsExceededException,
    QuizNotAvailableException,
    UnknownQuestionException,
    ValidationException,
)
from ..utils.helpers import utcnow
from ...config import Settings, get_settings
from .attempt_store import AttemptTotals, SQLAttemptStore
from .catalog import SQLQuizCatalog
from .progress import AttemptProgress, normalize_answers
from .scoring import QuestionResult, ScoreSummary, Verdict, score_answers

# Configure logging
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """The authenticated caller of an engine operation"""
    user_id: int
    role: UserRole = UserRole.LEARNER

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def can_manage(self, quiz: Quiz) -> bool:
        return self.is_admin or quiz.owner_id == self.user_id


@dataclass
class StartResult:
    status: str  # "created" or "resume"
    attempt: QuizAttempt
    quiz: Quiz

    @property
    def created(self) -> bool:
        return self.status == "created"


@dataclass
class SubmitResult:
    attempt: QuizAttempt
    quiz: Quiz
    summary: ScoreSummary
    results: Dict[str, Any]


@dataclass
class AttemptPage:
    items: List[QuizAttempt]
    total: int
    page: int
    per_page: int

    @property
    def last_page(self) -> int:
        return max(1, -(-self.total // self.per_page))


@dataclass
class AttemptStatistics:
    totals: AttemptTotals
    recent_attempts: Sequence[QuizAttempt] = field(default_factory=list)

    @property
    def completion_rate(self) -> float:
        if not self.totals.total_attempts:
            return 0.0
        return round(self.totals.completed_attempts / self.totals.total_attempts * 100, 2)


def results_summary(attempt: QuizAttempt) -> Dict[str, Any]:
    """Results block for a scored attempt"""
    progress = AttemptProgress.from_dict(attempt.progress, attempt.total_questions)
    return {
        "score": attempt.score or 0.0,
        "maxScore": attempt.max_score or 0.0,
        "correctAnswers": attempt.correct_answers,
        "incorrectAnswers": attempt.incorrect_answers,
        "pendingAnswers": attempt.pending_answers,
        "earnedPoints": attempt.earned_points or 0.0,
        "penaltyPoints": attempt.penalty_points or 0.0,
        "completionPercentage": progress.completion_percentage,
        "timeSpent": attempt.time_spent_seconds,
    }


def _answer_text(result: QuestionResult) -> Optional[str]:
    if result.answer is None:
        return None
    if isinstance(result.answer, str):
        return result.answer
    return json.dumps(result.answer)


class AttemptEngine:
    """State machine over quiz attempts"""

    def __init__(
        self,
        store: SQLAttemptStore,
        catalog: SQLQuizCatalog,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.store = store
        self.catalog = catalog
        self.settings = settings or get_settings()
        self.clock = clock

    # Start

    async def start(self, principal: Principal, quiz_id: int, force_new: bool = False) -> StartResult:
        """Create an attempt, or hand back the one already in progress"""
        quiz = await self.catalog.get_quiz(quiz_id)
        privileged = principal.can_manage(quiz)

        if not privileged:
            if quiz.status != QuizStatus.PUBLISHED:
                raise QuizNotAvailableException("quiz is not published", str(quiz.id))
            if not await self.catalog.is_enrolled(principal.user_id, quiz.id):
                raise EnrollmentRequiredException(str(quiz.id))

        existing = await self.store.get_active(principal.user_id, quiz.id, lock=True)

        if existing is not None and self._has_run_out(existing, quiz):
            self._mark_expired(existing)
            # Persist the expiry even if the cap check below refuses the start
            await self.store.commit()
            existing = None

        if existing is not None and not force_new:
            existing.remaining_time_seconds = self._remaining_seconds(existing, quiz)
            await self.store.commit()
            logger.info(
                f"Resuming attempt {existing.id} for user {principal.user_id} on quiz {quiz.id}"
            )
            return StartResult("resume", existing, quiz)

        # Checked before the old attempt is abandoned so a refusal leaves it untouched
        if not privileged:
            await self._enforce_attempt_cap(principal, quiz)

        if existing is not None:
            existing.status = AttemptStatus.ABANDONED
            await self.store.flush()
            logger.info(f"Attempt {existing.id} abandoned by force-new for user {principal.user_id}")

        attempt = self._new_attempt(principal, quiz)
        await self.store.add(attempt)
        await self.store.commit()

        logger.info(f"Attempt {attempt.id} created for user {principal.user_id} on quiz {quiz.id}")
        return StartResult("created", attempt, quiz)

    async def _enforce_attempt_cap(self, principal: Principal, quiz: Quiz):
        if not quiz.allow_multiple_attempts:
            completed = await self.store.count(
                principal.user_id, quiz.id, statuses=[AttemptStatus.COMPLETED]
            )
            if completed:
                raise MaxAttemptsExceededException(str(quiz.id), quiz.max_attempts or 1, completed)

        if not quiz.max_attempts:
            return

        counted = [AttemptStatus.COMPLETED, AttemptStatus.IN_PROGRESS]
        if not quiz.allow_multiple_attempts:
            # Abandoning never frees a slot on single-attempt quizzes
            counted += [AttemptStatus.ABANDONED, AttemptStatus.EXPIRED]

        used = await self.store.count(principal.user_id, quiz.id, statuses=counted)
        if used >= quiz.max_attempts:
            raise MaxAttemptsExceededException(str(quiz.id), quiz.max_attempts, used)

    def _new_attempt(self, principal: Principal, quiz: Quiz) -> QuizAttempt:
        now = self.clock()
        question_order, option_order = self.catalog.snapshot_order(quiz)
        progress = AttemptProgress(total_questions=len(question_order))
        progress.touch(now)

        return QuizAttempt(
            user_id=principal.user_id,
            quiz_id=quiz.id,
            status=AttemptStatus.IN_PROGRESS,
            current_question_index=0,
            total_questions=len(question_order),
            time_spent_seconds=0,
            remaining_time_seconds=quiz.timer_seconds or None,
            progress=progress.to_dict(),
            question_order=question_order,
            option_order=option_order,
            started_at=now,
        )

    # Timing

    def _elapsed_seconds(self, attempt: QuizAttempt) -> float:
        return (self.clock() - attempt.started_at).total_seconds()

    def _has_run_out(self, attempt: QuizAttempt, quiz: Quiz, grace: int = 0) -> bool:
        if not quiz.timer_seconds:
            return False
        return self._elapsed_seconds(attempt) > quiz.timer_seconds + grace

    def _remaining_seconds(self, attempt: QuizAttempt, quiz: Quiz) -> Optional[int]:
        if not quiz.timer_seconds:
            return None
        return max(0, int(quiz.timer_seconds - self._elapsed_seconds(attempt)))

    def _mark_expired(self, attempt: QuizAttempt):
        attempt.status = AttemptStatus.EXPIRED
        attempt.remaining_time_seconds = 0
        logger.info(f"Attempt {attempt.id} expired for user {attempt.user_id} on quiz {attempt.quiz_id}")

    async def _expire_if_run_out(self, attempt: QuizAttempt, quiz: Quiz, grace: int = 0):
        if not self._has_run_out(attempt, quiz, grace):
            return
        self._mark_expired(attempt)
        await self.store.commit()
        raise AttemptExpiredException(str(attempt.id), quiz.timer_seconds)

    # Loading

    async def _load(self, attempt_id: int) -> QuizAttempt:
        attempt = await self.store.get(attempt_id)
        if attempt is None:
            raise AttemptNotFoundException(str(attempt_id))
        return attempt

    async def _load_in_progress(self, attempt_id: int, action: str) -> QuizAttempt:
        attempt = await self._load(attempt_id)
        if attempt.status == AttemptStatus.EXPIRED and action in ("resume", "submit"):
            raise AttemptExpiredException(str(attempt.id), attempt.quiz.timer_seconds if attempt.quiz else 0)
        if attempt.status != AttemptStatus.IN_PROGRESS:
            raise InvalidAttemptStateException(str(attempt.id), attempt.status.value, action)
        return attempt

    def _check_answer_keys(self, attempt: QuizAttempt, answers: Dict[str, Any]):
        snapshot = {str(question_id) for question_id in (attempt.question_order or [])}
        unknown = [key for key in answers if key not in snapshot]
        if unknown:
            raise UnknownQuestionException(unknown)

    # Resume / progress

    async def resume(self, principal: Principal, attempt_id: int) -> StartResult:
        attempt = await self._load_in_progress(attempt_id, "resume")
        quiz = await self.catalog.get_quiz(attempt.quiz_id, include_deleted=True)

        await self._expire_if_run_out(attempt, quiz)

        attempt.remaining_time_seconds = self._remaining_seconds(attempt, quiz)
        await self.store.commit()

        logger.info(f"Attempt {attempt.id} resumed by user {principal.user_id}")
        return StartResult("resume", attempt, quiz)

    async def update_progress(
        self,
        principal: Principal,
        attempt_id: int,
        current_question_index: int,
        time_spent_seconds: Optional[int],
        answers: Optional[Mapping[Any, Any]] = None
    ) -> QuizAttempt:
        """Merge a partial answer map into the stored progress"""
        attempt = await self._load_in_progress(attempt_id, "update")
        quiz = await self.catalog.get_quiz(attempt.quiz_id, include_deleted=True)

        if attempt.total_questions and current_question_index >= attempt.total_questions:
            raise ValidationException(
                "Question index is outside this attempt",
                field="current_question_index",
                value=current_question_index
            )

        answers = normalize_answers(answers)
        self._check_answer_keys(attempt, answers)

        progress = AttemptProgress.from_dict(attempt.progress, attempt.total_questions)
        progress.merge_answers(answers)
        progress.record_time(time_spent_seconds)
        progress.current_question_index = current_question_index
        progress.touch(self.clock())

        # Reassign so the JSON column is flagged dirty
        attempt.progress = progress.to_dict()
        attempt.current_question_index = current_question_index
        attempt.time_spent_seconds = progress.time_spent
        attempt.remaining_time_seconds = self._remaining_seconds(attempt, quiz)

        await self.store.commit()
        return attempt

    # Submit

    async def submit(
        self,
        principal: Principal,
        attempt_id: int,
        answers: Optional[Mapping[Any, Any]] = None,
        time_spent_seconds: Optional[int] = None
    ) -> SubmitResult:
        """Merge final answers, score the attempt and complete it"""
        attempt = await self._load_in_progress(attempt_id, "submit")
        quiz = await self.catalog.get_quiz(attempt.quiz_id, include_deleted=True)

        await self._expire_if_run_out(attempt, quiz, grace=self.settings.ATTEMPT_SUBMIT_GRACE_SECONDS)

        answers = normalize_answers(answers)
        self._check_answer_keys(attempt, answers)

        progress = AttemptProgress.from_dict(attempt.progress, attempt.total_questions)
        progress.merge_answers(answers)
        progress.record_time(time_spent_seconds)
        progress.current_question_index = attempt.total_questions
        now = self.clock()
        progress.touch(now)

        questions = self.catalog.gradable_questions(quiz, attempt.question_order, attempt.option_order)
        summary = score_answers(
            questions,
            progress.answers,
            negative_marking=quiz.negative_marking,
            negative_mark_value=quiz.negative_mark_value
        )

        for result in summary.results:
            attempt.answers.append(self._answer_row(result))

        attempt.progress = progress.to_dict()
        attempt.current_question_index = attempt.total_questions
        attempt.time_spent_seconds = progress.time_spent
        attempt.score = summary.score
        attempt.max_score = round(summary.max_score, 2)
        attempt.earned_points = round(summary.earned_points, 2)
        attempt.penalty_points = round(summary.penalty_points, 2)
        attempt.correct_answers = summary.correct_answers
        attempt.incorrect_answers = summary.incorrect_answers
        attempt.pending_answers = summary.pending_answers
        attempt.status = AttemptStatus.COMPLETED
        attempt.completed_at = now
        attempt.remaining_time_seconds = self._remaining_seconds(attempt, quiz)

        await self.store.commit()

        logger.info(
            f"Attempt {attempt.id} submitted by user {principal.user_id} on quiz {quiz.id}: "
            f"score {summary.score}"
        )
        return SubmitResult(attempt, quiz, summary, results_summary(attempt))

    @staticmethod
    def _answer_row(result: QuestionResult) -> AttemptAnswer:
        selected = result.selected_option_ids
        return AttemptAnswer(
            question_id=result.question_id,
            selected_option_id=selected[0] if len(selected) == 1 else None,
            answer_text=_answer_text(result),
            is_correct=result.is_correct,
            points_awarded=result.points_awarded,
            penalty_applied=result.penalty,
            requires_review=result.verdict is Verdict.PENDING,
        )

    # Abandon

    async def abandon(self, principal: Principal, attempt_id: int) -> QuizAttempt:
        """Abandon an attempt; already finished attempts are returned unchanged"""
        attempt = await self._load(attempt_id)

        if attempt.status != AttemptStatus.IN_PROGRESS:
            logger.debug(f"Abandon ignored for attempt {attempt.id}: already {attempt.status.value}")
            return attempt

        attempt.status = AttemptStatus.ABANDONED
        await self.store.commit()

        logger.info(f"Attempt {attempt.id} abandoned by user {principal.user_id}")
        return attempt

    # Read side

    async def get_one(self, principal: Principal, attempt_id: int) -> Tuple[QuizAttempt, Quiz]:
        attempt = await self._load(attempt_id)
        quiz = await self.catalog.get_quiz(attempt.quiz_id, include_deleted=True)
        return attempt, quiz

    async def list_mine(
        self,
        principal: Principal,
        quiz_id: Optional[int] = None,
        status: Optional[AttemptStatus] = None,
        page: int = 1,
        per_page: Optional[int] = None
    ) -> AttemptPage:
        per_page = min(per_page or self.settings.ATTEMPTS_PER_PAGE, self.settings.MAX_ATTEMPTS_PER_PAGE)
        page = max(1, page)
        items, total = await self.store.list_for_user(
            principal.user_id, quiz_id=quiz_id, status=status, page=page, per_page=per_page
        )
        return AttemptPage(items=items, total=total, page=page, per_page=per_page)

    async def statistics(self, principal: Principal, quiz_id: Optional[int] = None) -> AttemptStatistics:
        totals = await self.store.totals_for_user(principal.user_id, quiz_id)
        recent = await self.store.recent_completed(
            principal.user_id, quiz_id, limit=self.settings.RECENT_ATTEMPTS_LIMIT
        )
        return AttemptStatistics(totals=totals, recent_attempts=recent)


__all__ = [
    "Principal",
    "StartResult",
    "SubmitResult",
    "AttemptPage",
    "AttemptStatistics",
    "AttemptEngine",
    "results_summary",
]
