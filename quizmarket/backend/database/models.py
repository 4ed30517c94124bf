"""
QuizMarket Attempt Service
SQLAlchemy Database Models
"""

import enum
from datetime import datetime

from sqlalchemy import (
    Boolean, Column, DateTime, Integer, String, Text, Float,
    ForeignKey, JSON, Enum, UniqueConstraint, Index, CheckConstraint,
    text
)
from sqlalchemy.orm import declarative_base, relationship, validates

# Base class for all models
Base = declarative_base()


# Enums
class UserRole(enum.Enum):
    LEARNER = "learner"
    INSTRUCTOR = "instructor"
    ADMIN = "admin"


class QuizStatus(enum.Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class QuestionType(enum.Enum):
    MCQ = "mcq"
    TRUE_FALSE = "true_false"
    SHORT_DESC = "short_desc"


class AttemptStatus(enum.Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABANDONED = "abandoned"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not AttemptStatus.IN_PROGRESS


# Base model with common fields
class BaseModel(Base):
    __abstract__ = True

    id = Column(Integer, primary_key=True, autoincrement=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class User(BaseModel):
    __tablename__ = "users"

    name = Column(String(150), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    hashed_password = Column(String(255), nullable=False)
    role = Column(Enum(UserRole), default=UserRole.LEARNER, nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    last_login = Column(DateTime)

    # Relationships
    quizzes_owned = relationship("Quiz", back_populates="owner")
    enrollments = relationship("QuizEnrollment", back_populates="user")
    quiz_attempts = relationship("QuizAttempt", back_populates="user")

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @validates('email')
    def validate_email(self, key, email):
        assert '@' in email, "Invalid email format"
        return email.lower()


# Quiz catalog
class Quiz(BaseModel):
    __tablename__ = "quizzes"

    owner_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    difficulty = Column(String(20))  # easy, medium, hard
    status = Column(Enum(QuizStatus), default=QuizStatus.DRAFT, nullable=False)
    visibility = Column(String(20), default="public")
    timer_seconds = Column(Integer)  # null or 0 means unlimited
    randomize_questions = Column(Boolean, default=False, nullable=False)
    randomize_answers = Column(Boolean, default=False, nullable=False)
    allow_multiple_attempts = Column(Boolean, default=False, nullable=False)
    max_attempts = Column(Integer)
    negative_marking = Column(Boolean, default=False, nullable=False)
    negative_mark_value = Column(Float)
    is_deleted = Column(Boolean, default=False, nullable=False)

    # Relationships
    owner = relationship("User", back_populates="quizzes_owned")
    questions = relationship(
        "Question",
        back_populates="quiz",
        cascade="all, delete-orphan",
        order_by="Question.order_index"
    )
    enrollments = relationship("QuizEnrollment", back_populates="quiz", cascade="all, delete-orphan")
    attempts = relationship("QuizAttempt", back_populates="quiz")

    # Constraints
    __table_args__ = (
        Index('idx_quiz_status_owner', 'status', 'owner_id'),
        CheckConstraint('max_attempts IS NULL OR max_attempts > 0', name='positive_max_attempts'),
        CheckConstraint('negative_mark_value IS NULL OR negative_mark_value >= 0', name='non_negative_mark_value'),
    )

    @property
    def has_timer(self) -> bool:
        return bool(self.timer_seconds)


class Question(BaseModel):
    __tablename__ = "questions"

    quiz_id = Column(Integer, ForeignKey('quizzes.id'), nullable=False, index=True)
    type = Column(Enum(QuestionType), nullable=False)
    order_index = Column(Integer, nullable=False, default=0)
    text = Column(Text, nullable=False)
    prompt = Column(Text)
    explanation = Column(Text)
    points = Column(Float, default=1.0, nullable=False)
    multiple_correct = Column(Boolean, default=False, nullable=False)  # mcq only
    correct_boolean = Column(Boolean)  # true_false only
    sample_answer = Column(Text)  # short_desc only
    requires_manual_grading = Column(Boolean, default=False, nullable=False)

    # Relationships
    quiz = relationship("Quiz", back_populates="questions")
    options = relationship(
        "QuestionOption",
        back_populates="question",
        cascade="all, delete-orphan",
        order_by="QuestionOption.order_index"
    )

    __table_args__ = (
        CheckConstraint('points > 0', name='positive_points'),
    )


class QuestionOption(BaseModel):
    __tablename__ = "question_options"

    question_id = Column(Integer, ForeignKey('questions.id'), nullable=False, index=True)
    text = Column(Text, nullable=False)
    is_correct = Column(Boolean, default=False, nullable=False)
    order_index = Column(Integer, nullable=False, default=0)

    question = relationship("Question", back_populates="options")


class QuizEnrollment(BaseModel):
    __tablename__ = "quiz_enrollments"

    quiz_id = Column(Integer, ForeignKey('quizzes.id'), nullable=False)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False)

    quiz = relationship("Quiz", back_populates="enrollments")
    user = relationship("User", back_populates="enrollments")

    __table_args__ = (
        UniqueConstraint('quiz_id', 'user_id', name='_quiz_user_enrollment_uc'),
    )


# Attempt models
class QuizAttempt(BaseModel):
    __tablename__ = "quiz_attempts"

    user_id = Column(Integer, ForeignKey('users.id'), nullable=False)
    quiz_id = Column(Integer, ForeignKey('quizzes.id'), nullable=False)
    status = Column(
        Enum(AttemptStatus, values_callable=lambda statuses: [s.value for s in statuses]),
        default=AttemptStatus.IN_PROGRESS,
        nullable=False
    )
    current_question_index = Column(Integer, default=0, nullable=False)
    total_questions = Column(Integer, default=0, nullable=False)
    time_spent_seconds = Column(Integer, default=0, nullable=False)
    remaining_time_seconds = Column(Integer)
    progress = Column(JSON, default=dict)

    # Snapshot of the ordering shown to the user
    question_order = Column(JSON, default=list)  # [question_id, ...]
    option_order = Column(JSON, default=dict)  # {"question_id": [option_id, ...]}

    # Populated at submission
    score = Column(Float)  # percentage 0-100
    earned_points = Column(Float)
    penalty_points = Column(Float)
    max_score = Column(Float)  # points over auto-gradable questions
    correct_answers = Column(Integer, default=0, nullable=False)
    incorrect_answers = Column(Integer, default=0, nullable=False)
    pending_answers = Column(Integer, default=0, nullable=False)

    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    completed_at = Column(DateTime)

    # Relationships
    user = relationship("User", back_populates="quiz_attempts")
    quiz = relationship("Quiz", back_populates="attempts")
    answers = relationship("AttemptAnswer", back_populates="attempt", cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_attempt_user_quiz', 'user_id', 'quiz_id'),
        Index('idx_attempt_user_status', 'user_id', 'status'),
        # At most one in-progress attempt per (user, quiz)
        Index(
            'uq_attempt_active_user_quiz',
            'user_id', 'quiz_id',
            unique=True,
            sqlite_where=text("status = 'in_progress'"),
            postgresql_where=text("status = 'in_progress'"),
        ),
        CheckConstraint('current_question_index >= 0', name='non_negative_question_index'),
    )

    @property
    def is_in_progress(self) -> bool:
        return self.status == AttemptStatus.IN_PROGRESS


class AttemptAnswer(BaseModel):
    __tablename__ = "attempt_answers"

    quiz_attempt_id = Column(Integer, ForeignKey('quiz_attempts.id'), nullable=False, index=True)
    question_id = Column(Integer, ForeignKey('questions.id'), nullable=False)
    selected_option_id = Column(Integer, ForeignKey('question_options.id'))
    answer_text = Column(Text)
    is_correct = Column(Boolean, default=False, nullable=False)
    points_awarded = Column(Float, default=0.0, nullable=False)
    penalty_applied = Column(Float, default=0.0, nullable=False)
    requires_review = Column(Boolean, default=False, nullable=False)

    attempt = relationship("QuizAttempt", back_populates="answers")

    __table_args__ = (
        UniqueConstraint('quiz_attempt_id', 'question_id', name='_attempt_question_uc'),
    )


# Export all models
__all__ = [
    'Base', 'BaseModel',
    'User', 'Quiz', 'Question', 'QuestionOption', 'QuizEnrollment',
    'QuizAttempt', 'AttemptAnswer',
    # Enums
    'UserRole', 'QuizStatus', 'QuestionType', 'AttemptStatus',
]
