"""
QuizMarket Attempt Service
Quiz leaderboards built from completed attempts

Every user is represented by their best completed attempt: highest score,
then least time spent, then earliest completion. Users who share both score
and time share a rank and the next rank skips ahead (1, 1, 3).
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..database.models import Quiz, QuizAttempt, QuizStatus
from ..exceptions import QuizNotAvailableException
from .attempt_engine import Principal
from .attempt_store import SQLAttemptStore
from .catalog import SQLQuizCatalog
from ...config import Settings, get_settings

# Configure logging
logger = logging.getLogger(__name__)


def ranking_key(attempt: QuizAttempt) -> Tuple[float, int, datetime, int]:
    return (
        -float(attempt.score or 0.0),
        attempt.time_spent_seconds or 0,
        attempt.completed_at or datetime.max,
        attempt.id or 0,
    )


def best_attempt_per_user(attempts: Iterable[QuizAttempt]) -> List[QuizAttempt]:
    """Keep the best attempt of each user, returned in ranking order"""
    best: Dict[int, QuizAttempt] = {}
    for attempt in attempts:
        current = best.get(attempt.user_id)
        if current is None or ranking_key(attempt) < ranking_key(current):
            best[attempt.user_id] = attempt
    return sorted(best.values(), key=ranking_key)


@dataclass(frozen=True)
class RankingEntry:
    rank: int
    attempt: QuizAttempt
    passed: bool

    @property
    def score(self) -> float:
        return float(self.attempt.score or 0.0)


def rank_attempts(attempts: Iterable[QuizAttempt], pass_score: float) -> List[RankingEntry]:
    entries: List[RankingEntry] = []
    previous = None
    rank = 0

    for position, attempt in enumerate(best_attempt_per_user(attempts), start=1):
        tie = (float(attempt.score or 0.0), attempt.time_spent_seconds or 0)
        if tie != previous:
            rank = position
            previous = tie
        entries.append(RankingEntry(rank, attempt, tie[0] >= pass_score))

    return entries


@dataclass
class LeaderboardStats:
    average_score: float = 0.0
    highest_score: float = 0.0
    lowest_score: float = 0.0
    pass_rate: float = 0.0


def leaderboard_stats(entries: Sequence[RankingEntry]) -> LeaderboardStats:
    """Score spread and pass rate over every ranked participant"""
    if not entries:
        return LeaderboardStats()

    scores = [entry.score for entry in entries]
    passed = sum(1 for entry in entries if entry.passed)
    return LeaderboardStats(
        average_score=round(sum(scores) / len(scores), 2),
        highest_score=max(scores),
        lowest_score=min(scores),
        pass_rate=round(passed / len(entries) * 100, 2),
    )


@dataclass
class Leaderboard:
    quiz: Quiz
    entries: List[RankingEntry]
    total_participants: int
    stats: LeaderboardStats
    viewer_entry: Optional[RankingEntry] = None


@dataclass
class UserRanking:
    quiz: Quiz
    entry: RankingEntry
    total_participants: int


class RankingService:
    """Read-only leaderboards over the attempt store"""

    def __init__(
        self,
        store: SQLAttemptStore,
        catalog: SQLQuizCatalog,
        settings: Optional[Settings] = None
    ):
        self.store = store
        self.catalog = catalog
        self.settings = settings or get_settings()

    def _page_size(self, limit: Optional[int]) -> int:
        if limit is None:
            return self.settings.RANKING_DEFAULT_LIMIT
        return max(1, min(limit, self.settings.RANKING_MAX_LIMIT))

    async def quiz_leaderboard(
        self,
        quiz_id: int,
        viewer: Optional[Principal] = None,
        limit: Optional[int] = None
    ) -> Leaderboard:
        quiz = await self.catalog.get_quiz(quiz_id)
        if quiz.status != QuizStatus.PUBLISHED and not (viewer is not None and viewer.can_manage(quiz)):
            raise QuizNotAvailableException("quiz is not published", str(quiz.id))

        ranked = rank_attempts(
            await self.store.completed_for_quizzes([quiz.id]), self.settings.RANKING_PASS_SCORE
        )

        viewer_entry = None
        if viewer is not None:
            viewer_entry = next((entry for entry in ranked if entry.attempt.user_id == viewer.user_id), None)

        logger.debug(f"Leaderboard for quiz {quiz.id}: {len(ranked)} participants")
        return Leaderboard(
            quiz=quiz,
            entries=ranked[:self._page_size(limit)],
            total_participants=len(ranked),
            stats=leaderboard_stats(ranked),
            viewer_entry=viewer_entry,
        )

    async def user_rankings(self, user_id: int) -> List[UserRanking]:
        """The user's standing on every quiz they completed, most recent first"""
        quiz_ids = await self.store.completed_quiz_ids(user_id)
        if not quiz_ids:
            return []

        by_quiz: Dict[int, List[QuizAttempt]] = {}
        for attempt in await self.store.completed_for_quizzes(quiz_ids):
            by_quiz.setdefault(attempt.quiz_id, []).append(attempt)

        rankings = []
        for quiz_id in quiz_ids:
            ranked = rank_attempts(by_quiz.get(quiz_id, []), self.settings.RANKING_PASS_SCORE)
            mine = next((entry for entry in ranked if entry.attempt.user_id == user_id), None)
            if mine is not None:
                rankings.append(UserRanking(mine.attempt.quiz, mine, len(ranked)))

        return rankings


__all__ = [
    "ranking_key",
    "best_attempt_per_user",
    "rank_attempts",
    "leaderboard_stats",
    "RankingEntry",
    "LeaderboardStats",
    "Leaderboard",
    "UserRanking",
    "RankingService",
]
