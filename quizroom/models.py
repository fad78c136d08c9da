from enum import Enum
from typing import Optional
from sqlalchemy import Index, UniqueConstraint, text
from sqlmodel import SQLModel, Field
from datetime import datetime, timezone


def now_utc():
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands datetimes back naive; they were stored as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Role(str, Enum):
    ADMIN = "admin"
    STUDENT = "student"


class QuizStatus(str, Enum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class QuestionType(str, Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    ESSAY = "essay"


CHOICE_TYPES = (QuestionType.MULTIPLE_CHOICE.value, QuestionType.TRUE_FALSE.value)


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True)
    password_hash: str
    full_name: Optional[str] = None
    role: str = Field(default=Role.STUDENT.value)  # admin|student
    index_number: Optional[str] = Field(default=None, index=True, unique=True)
    created_at: datetime = Field(default_factory=now_utc)


class Class(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    code: str = Field(index=True, unique=True)
    description: Optional[str] = None
    subject: Optional[str] = None
    semester: Optional[str] = None
    academic_year: Optional[str] = None
    owner_id: int = Field(foreign_key="user.id")
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)


class Enrollment(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("class_id", "user_id", name="uq_enrollment_class_user"),
    )
    id: Optional[int] = Field(default=None, primary_key=True)
    class_id: int = Field(foreign_key="class.id", index=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    enrolled_at: datetime = Field(default_factory=now_utc)


class Quiz(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    class_id: int = Field(foreign_key="class.id", index=True)
    author_id: int = Field(foreign_key="user.id")
    title: str
    description: Optional[str] = None
    instructions: Optional[str] = None
    quiz_code: str = Field(index=True, unique=True, max_length=6)
    status: str = Field(default=QuizStatus.DRAFT.value, index=True)
    scheduled_start: Optional[datetime] = None
    scheduled_end: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    attempts_allowed: Optional[int] = Field(default=1)  # None = unlimited
    show_results: bool = Field(default=True)
    randomize_questions: bool = Field(default=False)
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)


class Question(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("quiz_id", "order_index", name="uq_question_order"),
    )
    id: Optional[int] = Field(default=None, primary_key=True)
    quiz_id: int = Field(foreign_key="quiz.id", index=True)
    type: str
    text: str
    points: float = Field(default=1.0)
    order_index: int
    explanation: Optional[str] = None


class QuestionOption(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    question_id: int = Field(foreign_key="question.id", index=True)
    text: str
    is_correct: bool = Field(default=False)
    order_index: int = Field(default=0)


class Attempt(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("quiz_id", "user_id", "attempt_number", name="uq_attempt_number"),
        # at most one in-progress attempt per (quiz, student)
        Index(
            "uq_attempt_in_progress",
            "quiz_id",
            "user_id",
            unique=True,
            sqlite_where=text("is_completed = 0"),
            postgresql_where=text("is_completed = false"),
        ),
    )
    id: Optional[int] = Field(default=None, primary_key=True)
    quiz_id: int = Field(foreign_key="quiz.id", index=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    attempt_number: int
    started_at: datetime = Field(default_factory=now_utc)
    submitted_at: Optional[datetime] = None
    score: Optional[float] = None  # percentage
    max_score: Optional[float] = None
    points_earned: Optional[float] = None
    time_taken_seconds: Optional[int] = None
    is_completed: bool = Field(default=False)


class StudentAnswer(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_answer_attempt_question"),
    )
    id: Optional[int] = Field(default=None, primary_key=True)
    attempt_id: int = Field(foreign_key="attempt.id", index=True)
    question_id: int = Field(foreign_key="question.id")
    selected_option_id: Optional[int] = Field(default=None, foreign_key="questionoption.id")
    answer_text: Optional[str] = None
    points_awarded: float = Field(default=0.0)
    is_correct: Optional[bool] = None
    answered_at: datetime = Field(default_factory=now_utc)
