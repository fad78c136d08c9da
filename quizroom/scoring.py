"""Grading and gating rules for quiz attempts.

Everything here works on already-loaded records and never touches the
database, so the same rules serve submission, listings and reports.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from quizroom.models import (
    CHOICE_TYPES,
    Question,
    QuestionOption,
    QuestionType,
    Quiz,
    QuizStatus,
    StudentAnswer,
    as_utc,
)

# draft -> scheduled -> active -> {completed, cancelled}
_STATUS_RANK = {
    QuizStatus.DRAFT.value: 0,
    QuizStatus.SCHEDULED.value: 1,
    QuizStatus.ACTIVE.value: 2,
    QuizStatus.COMPLETED.value: 3,
    QuizStatus.CANCELLED.value: 3,
}
TERMINAL_STATUSES = (QuizStatus.COMPLETED.value, QuizStatus.CANCELLED.value)


@dataclass(frozen=True)
class AttemptAllowance:
    """Per-student attempt cap; limit None means no cap."""

    limit: Optional[int] = None

    @classmethod
    def from_setting(cls, value: Optional[int]) -> "AttemptAllowance":
        if value is None or value == -1:
            return cls(None)
        if value < 1:
            raise ValueError("attempts_allowed must be positive or unlimited")
        return cls(int(value))

    @property
    def unbounded(self) -> bool:
        return self.limit is None

    def permits(self, prior_attempts: int) -> bool:
        return self.unbounded or prior_attempts < self.limit

    def remaining(self, prior_attempts: int) -> Optional[int]:
        if self.unbounded:
            return None
        return max(0, self.limit - prior_attempts)


@dataclass(frozen=True)
class GradedAnswer:
    points_awarded: float
    is_correct: Optional[bool]


def correct_option(options: Iterable[QuestionOption]) -> Optional[QuestionOption]:
    for opt in options:
        if opt.is_correct:
            return opt
    return None


def grade_answer(
    question: Question,
    options: Iterable[QuestionOption],
    answer: Optional[StudentAnswer],
) -> GradedAnswer:
    # essays wait for a human grader
    if question.type == QuestionType.ESSAY.value:
        return GradedAnswer(0.0, None)
    if answer is None or answer.selected_option_id is None:
        return GradedAnswer(0.0, False)
    right = correct_option(options)
    if right is not None and answer.selected_option_id == right.id:
        return GradedAnswer(float(question.points or 0), True)
    return GradedAnswer(0.0, False)


def score_percentage(points_earned: float, max_score: float) -> float:
    if max_score <= 0:
        return 0.0
    return 100.0 * points_earned / max_score


def max_score_for(questions: Iterable[Question]) -> float:
    return float(sum(q.points or 0 for q in questions))


def is_joinable(quiz: Quiz, now: datetime) -> bool:
    if quiz.status == QuizStatus.ACTIVE.value:
        return True
    if quiz.status == QuizStatus.SCHEDULED.value:
        start = as_utc(quiz.scheduled_start)
        end = as_utc(quiz.scheduled_end)
        if start is None or end is None:
            return False
        return start <= as_utc(now) <= end
    return False


def not_joinable_reason(quiz: Quiz, now: datetime) -> str:
    if quiz.status == QuizStatus.DRAFT.value:
        return "This quiz is not yet available"
    if quiz.status in TERMINAL_STATUSES:
        return "This quiz has already ended"
    if quiz.status == QuizStatus.SCHEDULED.value:
        start = as_utc(quiz.scheduled_start)
        if start is not None and as_utc(now) < start:
            return "This quiz hasn't started yet"
        return "This quiz is outside its scheduled window"
    return "This quiz is not open"


def attempt_deadline(quiz: Quiz, started_at: datetime) -> Optional[datetime]:
    if not quiz.duration_minutes:
        return None
    return as_utc(started_at) + timedelta(minutes=quiz.duration_minutes)


def can_transition(current: str, new: str) -> bool:
    if current not in _STATUS_RANK or new not in _STATUS_RANK:
        return False
    if current in TERMINAL_STATUSES:
        return False
    return _STATUS_RANK[new] > _STATUS_RANK[current]


def letter_grade(score: Optional[float]) -> Optional[str]:
    if score is None:
        return None
    if score >= 90:
        return "A"
    if score >= 80:
        return "B"
    if score >= 70:
        return "C"
    if score >= 60:
        return "D"
    return "F"


def expects_option(question: Question) -> bool:
    return question.type in CHOICE_TYPES
