"""
QuizMarket Attempt Service
Demo data for development databases
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    User, UserRole, Quiz, QuizStatus, Question, QuestionType,
    QuestionOption, QuizEnrollment
)

logger = logging.getLogger(__name__)

DEMO_PASSWORD = "demo-password-1"


async def create_demo_data(session: AsyncSession) -> Quiz:
    """Create an instructor and a learner enrolled in one published quiz"""
    from ..api.auth import hash_password

    instructor = User(
        name="Demo Instructor",
        email="instructor@quizmarket.dev",
        hashed_password=hash_password(DEMO_PASSWORD),
        role=UserRole.INSTRUCTOR,
    )
    learner = User(
        name="Demo Learner",
        email="learner@quizmarket.dev",
        hashed_password=hash_password(DEMO_PASSWORD),
        role=UserRole.LEARNER,
    )
    session.add_all([instructor, learner])
    await session.flush()

    quiz = Quiz(
        owner_id=instructor.id,
        title="Python Fundamentals",
        description="A short warm-up on core Python semantics",
        difficulty="easy",
        status=QuizStatus.PUBLISHED,
        timer_seconds=600,
        allow_multiple_attempts=True,
        max_attempts=3,
        negative_marking=True,
        negative_mark_value=0.25,
    )
    quiz.questions = [
        Question(
            type=QuestionType.MCQ,
            order_index=1,
            text="Which built-in returns the number of items in a list?",
            points=1,
            options=[
                QuestionOption(text="len()", is_correct=True, order_index=1),
                QuestionOption(text="size()", is_correct=False, order_index=2),
                QuestionOption(text="count()", is_correct=False, order_index=3),
            ],
        ),
        Question(
            type=QuestionType.MCQ,
            order_index=2,
            text="Which of these types are immutable?",
            points=2,
            multiple_correct=True,
            options=[
                QuestionOption(text="tuple", is_correct=True, order_index=1),
                QuestionOption(text="list", is_correct=False, order_index=2),
                QuestionOption(text="frozenset", is_correct=True, order_index=3),
                QuestionOption(text="dict", is_correct=False, order_index=4),
            ],
        ),
        Question(
            type=QuestionType.TRUE_FALSE,
            order_index=3,
            text="Strings in Python are mutable.",
            points=1,
            correct_boolean=False,
        ),
        Question(
            type=QuestionType.SHORT_DESC,
            order_index=4,
            text="Explain the difference between `is` and `==`.",
            points=3,
            requires_manual_grading=True,
            sample_answer="`is` compares identity, `==` compares equality.",
        ),
    ]
    session.add(quiz)
    await session.flush()

    session.add(QuizEnrollment(quiz_id=quiz.id, user_id=learner.id))
    await session.flush()

    logger.info(f"Seeded demo quiz {quiz.id} owned by {instructor.email}")
    return quiz
