"""
QuizMarket Attempt Service
Quiz attempt API routes
"""

import logging
from typing import Optional, Dict, Any, List

from fastapi import APIRouter, Depends, Query, Path, Request, Response, status
from pydantic import BaseModel, AliasChoices, Field

from ..database.models import AttemptAnswer, AttemptStatus, Quiz, QuizAttempt, QuizStatus
from ..dependencies import (
    get_attempt_engine,
    get_attempt_store,
    get_quiz_catalog,
    get_request_origin,
    get_security_guard,
    quiz_attempt_security,
)
from ..exceptions import QuizNotAvailableException
from ..services.attempt_engine import AttemptEngine, AttemptPage, Principal, StartResult, results_summary
from ..services.attempt_store import SQLAttemptStore
from ..services.catalog import SQLQuizCatalog
from ..services.progress import AttemptProgress
from ..services.security_guard import AttemptSecurityGuard, RequestOrigin
from ..utils.helpers import isoformat
from ...config import get_settings

# Configure logging
logger = logging.getLogger(__name__)

# Router instance
router = APIRouter()


# Pydantic models
class StartAttemptRequest(BaseModel):
    force_new: bool = Field(False, validation_alias=AliasChoices("force_new", "forceNew"))


class LegacyStartAttemptRequest(StartAttemptRequest):
    quiz_id: int = Field(..., gt=0, validation_alias=AliasChoices("quiz_id", "quizId"))


class ProgressUpdateRequest(BaseModel):
    current_question_index: int = Field(
        0, ge=0, validation_alias=AliasChoices("current_question_index", "currentQuestionIndex")
    )
    time_spent_seconds: Optional[int] = Field(
        None, ge=0, validation_alias=AliasChoices("time_spent_seconds", "timeSpent")
    )
    answers: Dict[str, Any] = Field(default_factory=dict)


class SubmitAttemptRequest(BaseModel):
    answers: Dict[str, Any] = Field(default_factory=dict)
    time_spent_seconds: Optional[int] = Field(
        None, ge=0, validation_alias=AliasChoices("time_spent_seconds", "timeSpent")
    )


# Response helpers
def transform_attempt(attempt: QuizAttempt) -> Dict[str, Any]:
    progress = AttemptProgress.from_dict(attempt.progress, attempt.total_questions)
    return {
        "id": attempt.id,
        "quiz_id": attempt.quiz_id,
        "user_id": attempt.user_id,
        "status": attempt.status.value,
        "current_question_index": attempt.current_question_index,
        "total_questions": attempt.total_questions,
        "time_spent_seconds": attempt.time_spent_seconds,
        "remaining_time_seconds": attempt.remaining_time_seconds,
        "progress": progress.to_dict(),
        "question_order": list(attempt.question_order or []),
        "score": attempt.score,
        "max_score": attempt.max_score,
        "earned_points": attempt.earned_points,
        "penalty_points": attempt.penalty_points,
        "correct_answers": attempt.correct_answers,
        "incorrect_answers": attempt.incorrect_answers,
        "pending_answers": attempt.pending_answers,
        "started_at": isoformat(attempt.started_at),
        "completed_at": isoformat(attempt.completed_at),
    }


def transform_quiz(quiz: Quiz, attempt: Optional[QuizAttempt] = None, reveal: bool = False) -> Dict[str, Any]:
    """Quiz payload in the attempt's snapshotted order; correctness only when ``reveal``"""
    question_order = attempt.question_order if attempt is not None else None
    option_order = (attempt.option_order if attempt is not None else None) or {}

    questions = []
    for question in SQLQuizCatalog.ordered_questions(quiz, question_order):
        by_id = {option.id: option for option in question.options}
        option_ids = option_order.get(str(question.id))
        options = (
            [by_id[option_id] for option_id in option_ids if option_id in by_id]
            if option_ids is not None else list(question.options)
        )

        payload = {
            "id": question.id,
            "type": question.type.value,
            "text": question.text,
            "prompt": question.prompt,
            "points": question.points,
            "multiple_correct": question.multiple_correct,
            "requires_manual_grading": question.requires_manual_grading,
            "options": [
                {"index": index, "id": option.id, "text": option.text}
                for index, option in enumerate(options)
            ],
        }

        if reveal:
            payload["explanation"] = question.explanation
            payload["correct_boolean"] = question.correct_boolean
            for option_payload, option in zip(payload["options"], options):
                option_payload["is_correct"] = option.is_correct

        questions.append(payload)

    return {
        "id": quiz.id,
        "title": quiz.title,
        "description": quiz.description,
        "difficulty": quiz.difficulty,
        "timer_seconds": quiz.timer_seconds,
        "allow_multiple_attempts": quiz.allow_multiple_attempts,
        "max_attempts": quiz.max_attempts,
        "negative_marking": quiz.negative_marking,
        "negative_mark_value": quiz.negative_mark_value,
        "total_questions": len(questions),
        "questions": questions,
    }


def transform_answer(answer: AttemptAnswer) -> Dict[str, Any]:
    return {
        "question_id": answer.question_id,
        "selected_option_id": answer.selected_option_id,
        "answer_text": answer.answer_text,
        "is_correct": answer.is_correct,
        "points_awarded": answer.points_awarded,
        "penalty_applied": answer.penalty_applied,
        "requires_review": answer.requires_review,
    }


def attempt_summary(attempt: QuizAttempt) -> Dict[str, Any]:
    progress = AttemptProgress.from_dict(attempt.progress, attempt.total_questions)
    return {
        "id": attempt.id,
        "quiz_id": attempt.quiz_id,
        "quiz_title": attempt.quiz.title if attempt.quiz else None,
        "status": attempt.status.value,
        "score": attempt.score,
        "max_score": attempt.max_score,
        "correct_answers": attempt.correct_answers,
        "incorrect_answers": attempt.incorrect_answers,
        "completion_percentage": progress.completion_percentage,
        "time_spent_seconds": attempt.time_spent_seconds,
        "started_at": isoformat(attempt.started_at),
        "completed_at": isoformat(attempt.completed_at),
    }


def start_response(result: StartResult, response: Response) -> Dict[str, Any]:
    response.status_code = status.HTTP_201_CREATED if result.created else status.HTTP_200_OK
    return {
        "status": result.status,
        "attempt": transform_attempt(result.attempt),
        "quiz": transform_quiz(result.quiz, result.attempt),
    }


def pagination_links(request: Request, page: AttemptPage) -> Dict[str, Optional[str]]:
    def link(number: int) -> str:
        return str(request.url.include_query_params(page=number, per_page=page.per_page))

    return {
        "first": link(1),
        "last": link(page.last_page),
        "prev": link(page.page - 1) if page.page > 1 else None,
        "next": link(page.page + 1) if page.page < page.last_page else None,
    }


async def _start(
    quiz_id: int,
    force_new: bool,
    response: Response,
    principal: Principal,
    engine: AttemptEngine,
    guard: AttemptSecurityGuard,
    store: SQLAttemptStore,
    origin: RequestOrigin
) -> Dict[str, Any]:
    active = await store.count_active_for_user(principal.user_id)
    await guard.inspect(principal.user_id, origin, active_attempts=active)

    result = await engine.start(principal, quiz_id, force_new=force_new)
    return start_response(result, response)


# Quiz-scoped routes
@router.post("/quizzes/{quiz_id}/attempts")
async def start_attempt(
    response: Response,
    quiz_id: int = Path(..., description="Quiz ID"),
    payload: Optional[StartAttemptRequest] = None,
    principal: Principal = Depends(quiz_attempt_security),
    engine: AttemptEngine = Depends(get_attempt_engine),
    guard: AttemptSecurityGuard = Depends(get_security_guard),
    store: SQLAttemptStore = Depends(get_attempt_store),
    origin: RequestOrigin = Depends(get_request_origin)
):
    """Start a quiz attempt, or resume the one in progress"""
    force_new = payload.force_new if payload else False
    return await _start(quiz_id, force_new, response, principal, engine, guard, store, origin)


@router.post("/quizzes/{quiz_id}/enroll")
async def enroll_in_quiz(
    response: Response,
    quiz_id: int = Path(..., description="Quiz ID"),
    principal: Principal = Depends(quiz_attempt_security),
    catalog: SQLQuizCatalog = Depends(get_quiz_catalog)
):
    """Enroll in a free quiz"""
    quiz = await catalog.get_quiz(quiz_id)

    if quiz.status != QuizStatus.PUBLISHED and not principal.can_manage(quiz):
        raise QuizNotAvailableException("quiz is not published", str(quiz.id))

    enrolled = await catalog.enroll(principal.user_id, quiz.id)
    response.status_code = status.HTTP_201_CREATED if enrolled else status.HTTP_200_OK

    return {
        "status": "enrolled" if enrolled else "already_enrolled",
        "quiz_id": quiz.id
    }


@router.get("/quizzes/{quiz_id}/enrollment-status")
async def get_enrollment_status(
    quiz_id: int = Path(..., description="Quiz ID"),
    principal: Principal = Depends(quiz_attempt_security),
    catalog: SQLQuizCatalog = Depends(get_quiz_catalog),
    store: SQLAttemptStore = Depends(get_attempt_store)
):
    """Whether the caller can attempt a quiz, and their attempt in progress if any"""
    quiz = await catalog.get_quiz(quiz_id)
    enrolled = principal.can_manage(quiz) or await catalog.is_enrolled(principal.user_id, quiz.id)
    active = await store.get_active(principal.user_id, quiz.id)
    completed = await store.count(principal.user_id, quiz.id, statuses=[AttemptStatus.COMPLETED])

    return {
        "quiz_id": quiz.id,
        "enrolled": enrolled,
        "active_attempt_id": active.id if active else None,
        "completed_attempts": completed,
        "max_attempts": quiz.max_attempts,
        "allow_multiple_attempts": quiz.allow_multiple_attempts
    }


# Attempt routes
@router.post("/quiz-attempts/start")
async def start_attempt_legacy(
    payload: LegacyStartAttemptRequest,
    response: Response,
    principal: Principal = Depends(quiz_attempt_security),
    engine: AttemptEngine = Depends(get_attempt_engine),
    guard: AttemptSecurityGuard = Depends(get_security_guard),
    store: SQLAttemptStore = Depends(get_attempt_store),
    origin: RequestOrigin = Depends(get_request_origin)
):
    """Start a quiz attempt with the quiz id in the body"""
    return await _start(payload.quiz_id, payload.force_new, response, principal, engine, guard, store, origin)


@router.post("/quiz-attempts/{attempt_id}/resume")
async def resume_attempt(
    attempt_id: int = Path(..., description="Attempt ID"),
    principal: Principal = Depends(quiz_attempt_security),
    engine: AttemptEngine = Depends(get_attempt_engine)
):
    result = await engine.resume(principal, attempt_id)
    return {
        "attempt": transform_attempt(result.attempt),
        "quiz": transform_quiz(result.quiz, result.attempt)
    }


@router.put("/quiz-attempts/{attempt_id}/progress")
async def update_attempt_progress(
    payload: ProgressUpdateRequest,
    attempt_id: int = Path(..., description="Attempt ID"),
    principal: Principal = Depends(quiz_attempt_security),
    engine: AttemptEngine = Depends(get_attempt_engine),
    guard: AttemptSecurityGuard = Depends(get_security_guard),
    origin: RequestOrigin = Depends(get_request_origin)
):
    """Save in-flight answers and timing"""
    await guard.inspect(
        principal.user_id,
        origin,
        time_spent_seconds=payload.time_spent_seconds,
        answers=payload.answers
    )

    attempt = await engine.update_progress(
        principal,
        attempt_id,
        current_question_index=payload.current_question_index,
        time_spent_seconds=payload.time_spent_seconds,
        answers=payload.answers
    )
    return {"status": "progress_saved", "attempt": transform_attempt(attempt)}


@router.post("/quiz-attempts/{attempt_id}/submit")
async def submit_attempt(
    payload: SubmitAttemptRequest,
    attempt_id: int = Path(..., description="Attempt ID"),
    principal: Principal = Depends(quiz_attempt_security),
    engine: AttemptEngine = Depends(get_attempt_engine),
    guard: AttemptSecurityGuard = Depends(get_security_guard),
    origin: RequestOrigin = Depends(get_request_origin)
):
    """Submit final answers and score the attempt"""
    await guard.inspect(
        principal.user_id,
        origin,
        submission=True,
        time_spent_seconds=payload.time_spent_seconds,
        answers=payload.answers
    )

    result = await engine.submit(
        principal,
        attempt_id,
        answers=payload.answers,
        time_spent_seconds=payload.time_spent_seconds
    )
    return {
        "status": "completed",
        "attempt": transform_attempt(result.attempt),
        "results": result.results,
        "answers": [transform_answer(answer) for answer in result.attempt.answers],
        "quiz": transform_quiz(result.quiz, result.attempt, reveal=True)
    }


@router.post("/quiz-attempts/{attempt_id}/abandon")
async def abandon_attempt(
    attempt_id: int = Path(..., description="Attempt ID"),
    principal: Principal = Depends(quiz_attempt_security),
    engine: AttemptEngine = Depends(get_attempt_engine)
):
    attempt = await engine.abandon(principal, attempt_id)
    return {"status": "abandoned", "attempt": transform_attempt(attempt)}


@router.get("/quiz-attempts/{attempt_id}")
async def get_attempt(
    attempt_id: int = Path(..., description="Attempt ID"),
    principal: Principal = Depends(quiz_attempt_security),
    engine: AttemptEngine = Depends(get_attempt_engine)
):
    """Attempt details; correct answers are revealed once the attempt is completed"""
    attempt, quiz = await engine.get_one(principal, attempt_id)
    completed = attempt.status == AttemptStatus.COMPLETED

    return {
        "attempt": transform_attempt(attempt),
        "quiz": transform_quiz(quiz, attempt, reveal=completed or principal.can_manage(quiz)),
        "answers": [transform_answer(answer) for answer in attempt.answers] if completed else [],
        "results": results_summary(attempt) if completed else None
    }


# Per-user routes
@router.get("/user/quiz-attempts")
async def list_my_attempts(
    request: Request,
    quiz_id: Optional[int] = Query(None, gt=0),
    status_filter: Optional[AttemptStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    per_page: Optional[int] = Query(None, ge=1, le=get_settings().MAX_ATTEMPTS_PER_PAGE),
    principal: Principal = Depends(quiz_attempt_security),
    engine: AttemptEngine = Depends(get_attempt_engine)
):
    """Paginated list of the caller's attempts, newest first"""
    result = await engine.list_mine(
        principal, quiz_id=quiz_id, status=status_filter, page=page, per_page=per_page
    )
    attempts: List[Dict[str, Any]] = [attempt_summary(attempt) for attempt in result.items]
    offset = (result.page - 1) * result.per_page

    return {
        "attempts": attempts,
        "data": attempts,
        "meta": {
            "current_page": result.page,
            "per_page": result.per_page,
            "total": result.total,
            "last_page": result.last_page,
            "from": offset + 1 if attempts else None,
            "to": offset + len(attempts) if attempts else None
        },
        "links": pagination_links(request, result)
    }


@router.get("/user/attempt-statistics")
async def get_attempt_statistics(
    quiz_id: Optional[int] = Query(None, gt=0),
    principal: Principal = Depends(quiz_attempt_security),
    engine: AttemptEngine = Depends(get_attempt_engine)
):
    stats = await engine.statistics(principal, quiz_id=quiz_id)
    totals = stats.totals

    return {
        "totalAttempts": totals.total_attempts,
        "completedAttempts": totals.completed_attempts,
        "completionRate": stats.completion_rate,
        "averageScore": round(totals.average_score, 2) if totals.average_score is not None else 0.0,
        "bestScore": totals.best_score if totals.best_score is not None else 0.0,
        "totalTimeSpent": totals.total_time_spent,
        "recentAttempts": [attempt_summary(attempt) for attempt in stats.recent_attempts]
    }


__all__ = ["router"]
