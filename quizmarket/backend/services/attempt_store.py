"""
QuizMarket Attempt Service
Persistence of quiz attempts
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import select, func, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..database.models import Quiz, QuizAttempt, AttemptStatus
from ..exceptions import ConflictException

# Configure logging
logger = logging.getLogger(__name__)


@dataclass
class AttemptTotals:
    total_attempts: int = 0
    completed_attempts: int = 0
    average_score: Optional[float] = None
    best_score: Optional[float] = None
    total_time_spent: int = 0


class SQLAttemptStore:
    """Attempt CRUD, counts and aggregates over one database session"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, attempt_id: int) -> Optional[QuizAttempt]:
        result = await self.session.execute(
            select(QuizAttempt)
            .options(selectinload(QuizAttempt.answers), selectinload(QuizAttempt.quiz))
            .where(QuizAttempt.id == attempt_id)
        )
        return result.scalar_one_or_none()

    async def get_active(self, user_id: int, quiz_id: int, lock: bool = False) -> Optional[QuizAttempt]:
        """The in-progress attempt for (user, quiz), row-locked when ``lock`` is set"""
        query = select(QuizAttempt).where(
            QuizAttempt.user_id == user_id,
            QuizAttempt.quiz_id == quiz_id,
            QuizAttempt.status == AttemptStatus.IN_PROGRESS
        )
        if lock:
            # Ignored by SQLite; the partial unique index still holds there
            query = query.with_for_update()

        result = await self.session.execute(query)
        return result.scalars().first()

    async def count(
        self,
        user_id: int,
        quiz_id: Optional[int] = None,
        statuses: Optional[Iterable[AttemptStatus]] = None
    ) -> int:
        query = select(func.count(QuizAttempt.id)).where(QuizAttempt.user_id == user_id)
        if quiz_id is not None:
            query = query.where(QuizAttempt.quiz_id == quiz_id)
        if statuses is not None:
            query = query.where(QuizAttempt.status.in_(list(statuses)))

        result = await self.session.execute(query)
        return result.scalar() or 0

    async def count_active_for_user(self, user_id: int) -> int:
        return await self.count(user_id, statuses=[AttemptStatus.IN_PROGRESS])

    async def add(self, attempt: QuizAttempt) -> QuizAttempt:
        """Insert a new in-progress attempt; losing a concurrent start raises a conflict"""
        self.session.add(attempt)
        try:
            await self.session.flush()
        except IntegrityError as e:
            await self.session.rollback()
            logger.warning(
                f"Concurrent start rejected for user {attempt.user_id} on quiz {attempt.quiz_id}: {e.orig}"
            )
            raise ConflictException(
                "Another attempt for this quiz was started at the same time",
                conflict_type="active_attempt_exists",
                details={"quiz_id": str(attempt.quiz_id)}
            )
        return attempt

    async def flush(self):
        await self.session.flush()

    async def commit(self):
        await self.session.commit()

    async def list_for_user(
        self,
        user_id: int,
        quiz_id: Optional[int] = None,
        status: Optional[AttemptStatus] = None,
        page: int = 1,
        per_page: int = 15
    ) -> Tuple[List[QuizAttempt], int]:
        """One page of a user's attempts, newest first, with the total match count"""
        filters = [QuizAttempt.user_id == user_id]
        if quiz_id is not None:
            filters.append(QuizAttempt.quiz_id == quiz_id)
        if status is not None:
            filters.append(QuizAttempt.status == status)

        total_result = await self.session.execute(select(func.count(QuizAttempt.id)).where(*filters))
        total = total_result.scalar() or 0

        result = await self.session.execute(
            select(QuizAttempt)
            .options(selectinload(QuizAttempt.quiz))
            .where(*filters)
            .order_by(desc(QuizAttempt.started_at), desc(QuizAttempt.id))
            .offset((page - 1) * per_page)
            .limit(per_page)
        )
        return list(result.scalars().all()), total

    async def totals_for_user(self, user_id: int, quiz_id: Optional[int] = None) -> AttemptTotals:
        filters = [QuizAttempt.user_id == user_id]
        if quiz_id is not None:
            filters.append(QuizAttempt.quiz_id == quiz_id)

        overall = await self.session.execute(
            select(
                func.count(QuizAttempt.id),
                func.coalesce(func.sum(QuizAttempt.time_spent_seconds), 0)
            ).where(*filters)
        )
        total_attempts, total_time = overall.one()

        completed = await self.session.execute(
            select(
                func.count(QuizAttempt.id),
                func.avg(QuizAttempt.score),
                func.max(QuizAttempt.score)
            ).where(*filters, QuizAttempt.status == AttemptStatus.COMPLETED)
        )
        completed_attempts, average_score, best_score = completed.one()

        return AttemptTotals(
            total_attempts=total_attempts or 0,
            completed_attempts=completed_attempts or 0,
            average_score=float(average_score) if average_score is not None else None,
            best_score=float(best_score) if best_score is not None else None,
            total_time_spent=int(total_time or 0)
        )

    async def recent_completed(
        self,
        user_id: int,
        quiz_id: Optional[int] = None,
        limit: int = 10
    ) -> Sequence[QuizAttempt]:
        query = (
            select(QuizAttempt)
            .options(selectinload(QuizAttempt.quiz))
            .where(QuizAttempt.user_id == user_id, QuizAttempt.status == AttemptStatus.COMPLETED)
        )
        if quiz_id is not None:
            query = query.where(QuizAttempt.quiz_id == quiz_id)

        result = await self.session.execute(
            query.order_by(desc(QuizAttempt.completed_at), desc(QuizAttempt.id)).limit(limit)
        )
        return result.scalars().all()

    # Rankings

    async def completed_for_quizzes(self, quiz_ids: Sequence[int]) -> List[QuizAttempt]:
        """Scored completed attempts on the given quizzes, best first, with user and quiz loaded"""
        if not quiz_ids:
            return []

        result = await self.session.execute(
            select(QuizAttempt)
            .options(selectinload(QuizAttempt.user), selectinload(QuizAttempt.quiz))
            .where(
                QuizAttempt.quiz_id.in_(list(quiz_ids)),
                QuizAttempt.status == AttemptStatus.COMPLETED,
                QuizAttempt.score.isnot(None)
            )
            .order_by(
                desc(QuizAttempt.score),
                QuizAttempt.time_spent_seconds,
                QuizAttempt.completed_at,
                QuizAttempt.id
            )
        )
        return list(result.scalars().all())

    async def completed_quiz_ids(self, user_id: int) -> List[int]:
        """Live quizzes the user has a scored completion on, most recently completed first"""
        last_completed = func.max(QuizAttempt.completed_at)
        result = await self.session.execute(
            select(QuizAttempt.quiz_id)
            .join(Quiz, Quiz.id == QuizAttempt.quiz_id)
            .where(
                QuizAttempt.user_id == user_id,
                QuizAttempt.status == AttemptStatus.COMPLETED,
                QuizAttempt.score.isnot(None),
                Quiz.is_deleted.is_(False)
            )
            .group_by(QuizAttempt.quiz_id)
            .order_by(desc(last_completed), desc(QuizAttempt.quiz_id))
        )
        return list(result.scalars().all())


__all__ = ["SQLAttemptStore", "AttemptTotals"]
