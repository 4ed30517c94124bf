"""
QuizMarket Attempt Service
Quiz ranking API routes
"""

import logging
from typing import Optional, Dict, Any

from fastapi import APIRouter, Depends, Query, Path

from ..database.models import User
from ..dependencies import get_current_user, get_principal, get_ranking_service
from ..services.attempt_engine import Principal
from ..services.ranking import Leaderboard, RankingEntry, RankingService, UserRanking
from ..utils.helpers import format_duration, isoformat

# Configure logging
logger = logging.getLogger(__name__)

# Router instance
router = APIRouter()


# Response helpers
def result_label(entry: RankingEntry) -> str:
    return "Pass" if entry.passed else "Fail"


def transform_ranking_entry(entry: RankingEntry) -> Dict[str, Any]:
    """Public leaderboard row; contact details stay private"""
    attempt = entry.attempt
    return {
        "rank": entry.rank,
        "user": {"id": attempt.user.id, "name": attempt.user.name},
        "score": entry.score,
        "result": result_label(entry),
        "correct_answers": attempt.correct_answers,
        "incorrect_answers": attempt.incorrect_answers,
        "total_questions": attempt.total_questions,
        "time_spent_seconds": attempt.time_spent_seconds,
        "time_spent_formatted": format_duration(attempt.time_spent_seconds),
        "completed_at": isoformat(attempt.completed_at),
        "status": "Completed",
    }


def transform_leaderboard(leaderboard: Leaderboard) -> Dict[str, Any]:
    quiz = leaderboard.quiz
    stats = leaderboard.stats
    return {
        "quiz": {
            "id": quiz.id,
            "title": quiz.title,
            "description": quiz.description,
            "difficulty": quiz.difficulty,
            "total_questions": len(quiz.questions),
            "timer_seconds": quiz.timer_seconds,
        },
        "ranking": [transform_ranking_entry(entry) for entry in leaderboard.entries],
        "total_participants": leaderboard.total_participants,
        "user_rank": (
            transform_ranking_entry(leaderboard.viewer_entry) if leaderboard.viewer_entry else None
        ),
        "stats": {
            "average_score": stats.average_score,
            "highest_score": stats.highest_score,
            "lowest_score": stats.lowest_score,
            "pass_rate": stats.pass_rate,
        },
    }


def transform_user_ranking(item: UserRanking) -> Dict[str, Any]:
    attempt = item.entry.attempt
    return {
        "quiz": {"id": item.quiz.id, "title": item.quiz.title, "difficulty": item.quiz.difficulty},
        "rank": item.entry.rank,
        "total_participants": item.total_participants,
        "score": item.entry.score,
        "result": result_label(item.entry),
        "correct_answers": attempt.correct_answers,
        "total_questions": attempt.total_questions,
        "time_spent_seconds": attempt.time_spent_seconds,
        "time_spent_formatted": format_duration(attempt.time_spent_seconds),
        "completed_at": isoformat(attempt.completed_at),
        "status": "Completed",
    }


# Routes
@router.get("/quizzes/{quiz_id}/ranking")
async def get_quiz_ranking(
    quiz_id: int = Path(..., gt=0),
    limit: Optional[int] = Query(None, ge=1),
    current_user: Optional[User] = Depends(get_current_user),
    rankings: RankingService = Depends(get_ranking_service)
):
    """Leaderboard of a quiz; signed-in callers also get their own rank"""
    viewer = Principal(user_id=current_user.id, role=current_user.role) if current_user else None
    leaderboard = await rankings.quiz_leaderboard(quiz_id, viewer=viewer, limit=limit)
    return transform_leaderboard(leaderboard)


@router.get("/user/quiz-rankings")
async def get_my_quiz_rankings(
    principal: Principal = Depends(get_principal),
    rankings: RankingService = Depends(get_ranking_service)
):
    items = await rankings.user_rankings(principal.user_id)
    return {"data": [transform_user_ranking(item) for item in items]}
