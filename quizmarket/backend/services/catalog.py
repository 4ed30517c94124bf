"""
QuizMarket Attempt Service
Quiz catalog lookups used by the attempt engine
"""

import logging
import random
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..database.models import Quiz, Question, QuestionType, QuizEnrollment
from ..exceptions import QuizNotFoundException
from .scoring import ChoiceOption, GradableQuestion, MultipleChoice, ShortDescription, TrueFalse

# Configure logging
logger = logging.getLogger(__name__)


def to_gradable(question: Question, option_ids: Optional[Sequence[int]] = None) -> GradableQuestion:
    """Convert a stored question into its gradable shape, options in ``option_ids`` order"""
    points = float(question.points or 0)

    if question.type == QuestionType.MCQ:
        by_id = {option.id: option for option in question.options}
        if option_ids is None:
            ordered = list(question.options)
        else:
            # Options deleted since the snapshot drop out; new ones are not shown
            ordered = [by_id[option_id] for option_id in option_ids if option_id in by_id]
        return MultipleChoice(
            id=question.id,
            points=points,
            options=tuple(ChoiceOption(option.id, bool(option.is_correct)) for option in ordered),
            multiple_correct=bool(question.multiple_correct),
        )

    if question.type == QuestionType.TRUE_FALSE:
        return TrueFalse(id=question.id, points=points, correct_boolean=question.correct_boolean)

    return ShortDescription(id=question.id, points=points)


class SQLQuizCatalog:
    """Read side of the quiz catalog plus free enrollment"""

    def __init__(self, session: AsyncSession, rng: Optional[random.Random] = None):
        self.session = session
        self.rng = rng or random.Random()

    async def get_quiz(self, quiz_id: int, include_deleted: bool = False) -> Quiz:
        query = (
            select(Quiz)
            .options(selectinload(Quiz.questions).selectinload(Question.options))
            .where(Quiz.id == quiz_id)
        )
        if not include_deleted:
            query = query.where(Quiz.is_deleted == False)

        result = await self.session.execute(query)
        quiz = result.scalar_one_or_none()

        if not quiz:
            raise QuizNotFoundException(str(quiz_id))

        return quiz

    async def is_enrolled(self, user_id: int, quiz_id: int) -> bool:
        result = await self.session.execute(
            select(QuizEnrollment.id).where(
                QuizEnrollment.user_id == user_id,
                QuizEnrollment.quiz_id == quiz_id
            )
        )
        return result.scalar_one_or_none() is not None

    async def enroll(self, user_id: int, quiz_id: int) -> bool:
        """Enroll a user; returns False when already enrolled"""
        if await self.is_enrolled(user_id, quiz_id):
            return False

        self.session.add(QuizEnrollment(user_id=user_id, quiz_id=quiz_id))
        try:
            await self.session.commit()
        except IntegrityError:
            # A concurrent request enrolled the same user first
            await self.session.rollback()
            return False

        logger.info(f"User {user_id} enrolled in quiz {quiz_id}")
        return True

    def snapshot_order(self, quiz: Quiz) -> Tuple[List[int], Dict[str, List[int]]]:
        """Pick the question order and per-question option order an attempt will use"""
        question_order = [question.id for question in quiz.questions]
        if quiz.randomize_questions:
            self.rng.shuffle(question_order)

        option_order: Dict[str, List[int]] = {}
        for question in quiz.questions:
            if question.type != QuestionType.MCQ:
                continue
            option_ids = [option.id for option in question.options]
            if quiz.randomize_answers:
                self.rng.shuffle(option_ids)
            option_order[str(question.id)] = option_ids

        return question_order, option_order

    @staticmethod
    def ordered_questions(quiz: Quiz, question_order: Optional[Sequence[int]]) -> List[Question]:
        """Questions in snapshot order; questions added after the snapshot are left out"""
        by_id = {question.id: question for question in quiz.questions}
        if question_order is None:
            return list(quiz.questions)
        return [by_id[question_id] for question_id in question_order if question_id in by_id]

    @classmethod
    def gradable_questions(
        cls,
        quiz: Quiz,
        question_order: Optional[Sequence[int]],
        option_order: Optional[Dict[str, List[int]]]
    ) -> List[GradableQuestion]:
        option_order = option_order or {}
        return [
            to_gradable(question, option_order.get(str(question.id)))
            for question in cls.ordered_questions(quiz, question_order)
        ]


__all__ = ["SQLQuizCatalog", "to_gradable"]
