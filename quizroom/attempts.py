"""Lifecycle of a student's attempt at a quiz.

An attempt moves NotStarted -> InProgress -> Submitted and never leaves
Submitted. Every operation takes the caller's identity explicitly; nothing
here reads ambient session state.

Concurrency is left to the database:

* one in-progress attempt per (quiz, student) is a partial unique index,
  so two racing starts resolve to the same attempt;
* answers are unique per (attempt, question), re-answering overwrites;
* submission finalises with a single conditional UPDATE on
  ``is_completed``, so only one caller ever scores an attempt.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional
import logging
import os
import random

from quizroom.classes import get_user_classes, is_enrolled
from quizroom.db import session_scope
from quizroom.errors import (
    AttemptClosed,
    CodeNotFound,
    InvalidAnswerShape,
    NotEnrolled,
    NotFound,
    NotJoinable,
    PermissionDenied,
    QuotaExceeded,
)
from quizroom.models import (
    Attempt,
    Class,
    Question,
    QuestionOption,
    QuestionType,
    Quiz,
    Role,
    StudentAnswer,
    User,
    as_utc,
    now_utc,
)
from quizroom.quiz import (
    QUIZ_CODE_LENGTH,
    get_available_quizzes,
    load_options,
    load_questions,
    normalize_quiz_code,
)
from quizroom.scoring import (
    AttemptAllowance,
    attempt_deadline,
    correct_option,
    expects_option,
    grade_answer,
    is_joinable,
    letter_grade,
    max_score_for,
    not_joinable_reason,
    score_percentage,
)
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

logger = logging.getLogger(__name__)

# essay answers longer than this are rejected, never truncated
MAX_ANSWER_TEXT_LENGTH = int(os.getenv("QUIZ_MAX_ANSWER_LENGTH", "10000"))

HIDDEN = "hidden"


@dataclass
class QuestionOutcome:
    question_id: int
    question_type: str
    points_possible: float
    points_awarded: float
    is_correct: Optional[bool]
    answer_id: Optional[int] = None
    selected_option_id: Optional[int] = None
    answer_text: Optional[str] = None


@dataclass
class SubmissionResult:
    attempt: Attempt
    outcomes: List[QuestionOutcome] = field(default_factory=list)

    @property
    def score(self) -> float:
        return self.attempt.score

    @property
    def max_score(self) -> float:
        return self.attempt.max_score

    @property
    def essay_count(self) -> int:
        return sum(1 for o in self.outcomes if o.question_type == QuestionType.ESSAY.value)

    def outcome_for(self, question_id: int) -> QuestionOutcome:
        for outcome in self.outcomes:
            if outcome.question_id == question_id:
                return outcome
        raise KeyError(question_id)


def _now(now: datetime | None) -> datetime:
    return as_utc(now) if now is not None else now_utc()


def _attempts_for(session, quiz_id: int, student_id: int):
    q = (
        select(Attempt)
        .where(Attempt.quiz_id == quiz_id, Attempt.user_id == student_id)
        .order_by(Attempt.attempt_number)
    )
    return list(session.exec(q))


def _in_progress(session, quiz_id: int, student_id: int):
    q = select(Attempt).where(
        Attempt.quiz_id == quiz_id,
        Attempt.user_id == student_id,
        Attempt.is_completed == False,  # noqa: E712
    )
    return session.exec(q).first()


def _owned_attempt(session, attempt_id: int, student_id: int) -> Attempt:
    attempt = session.get(Attempt, attempt_id)
    # someone else's attempt looks exactly like a missing one
    if not attempt or attempt.user_id != student_id:
        raise NotFound("Attempt not found")
    return attempt


def start_attempt(quiz_id: int, student_id: int, now: datetime | None = None) -> Attempt:
    """Create a new attempt, or hand back the one already in progress."""
    now = _now(now)
    with session_scope() as session:
        quiz = session.get(Quiz, quiz_id)
        if not quiz:
            raise NotFound("Quiz not found")
        if not is_enrolled(session, quiz.class_id, student_id):
            raise NotEnrolled("You're not enrolled in this class")
        if not is_joinable(quiz, now):
            raise NotJoinable(not_joinable_reason(quiz, now))

        attempts = _attempts_for(session, quiz_id, student_id)
        for existing in attempts:
            if not existing.is_completed:
                logger.info("Resuming attempt %s for user %s", existing.id, student_id)
                return existing

        allowance = AttemptAllowance.from_setting(quiz.attempts_allowed)
        if not allowance.permits(len(attempts)):
            raise QuotaExceeded("You have already used all attempts for this quiz")

        attempt = Attempt(
            quiz_id=quiz_id,
            user_id=student_id,
            attempt_number=len(attempts) + 1,
            started_at=now,
        )
        session.add(attempt)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            existing = _in_progress(session, quiz_id, student_id)
            if existing is None:
                raise
            logger.info("Concurrent start for quiz %s resolved to attempt %s", quiz_id, existing.id)
            return existing
        session.refresh(attempt)
        logger.info(
            "Started attempt %s (#%d) on quiz %s for user %s",
            attempt.id, attempt.attempt_number, quiz_id, student_id,
        )
        return attempt


def _answer_values(session, question: Question, option_id, text):
    if expects_option(question):
        if text is not None or option_id is None:
            raise InvalidAnswerShape(f"{question.type} questions expect a selected option")
        opt = session.get(QuestionOption, option_id)
        if not opt or opt.question_id != question.id:
            raise InvalidAnswerShape("Option does not belong to this question")
        return {'selected_option_id': opt.id, 'answer_text': None}

    if option_id is not None or not isinstance(text, str):
        raise InvalidAnswerShape("Essay questions expect free text")
    if not text.strip():
        raise InvalidAnswerShape("Answer text is empty")
    if len(text) > MAX_ANSWER_TEXT_LENGTH:
        raise InvalidAnswerShape(f"Answer text exceeds {MAX_ANSWER_TEXT_LENGTH} characters")
    return {'selected_option_id': None, 'answer_text': text}


def record_answer(
    attempt_id: int,
    student_id: int,
    question_id: int,
    option_id: int | None = None,
    text: str | None = None,
    now: datetime | None = None,
) -> StudentAnswer:
    """Save the answer to one question; answering again replaces it."""
    now = _now(now)
    with session_scope() as session:
        attempt = _owned_attempt(session, attempt_id, student_id)
        if attempt.is_completed:
            raise AttemptClosed("Attempt already submitted")
        quiz = session.get(Quiz, attempt.quiz_id)
        deadline = attempt_deadline(quiz, attempt.started_at)
        if deadline is not None and now > deadline:
            raise AttemptClosed("Time limit for this attempt has passed")

        question = session.get(Question, question_id)
        if not question or question.quiz_id != attempt.quiz_id:
            raise NotFound("Question not found in this quiz")
        values = _answer_values(session, question, option_id, text)

        answer = _saved_answer(session, attempt_id, question_id)
        if answer is None:
            answer = StudentAnswer(attempt_id=attempt_id, question_id=question_id, answered_at=now, **values)
            session.add(answer)
            try:
                session.commit()
            except IntegrityError:
                # concurrent first answer; fall through to overwrite it
                session.rollback()
                answer = _saved_answer(session, attempt_id, question_id)
                logger.info("Concurrent first answer on attempt %s question %s", attempt_id, question_id)
            else:
                session.refresh(answer)
                return answer

        answer.selected_option_id = values['selected_option_id']
        answer.answer_text = values['answer_text']
        answer.answered_at = now
        session.add(answer)
        session.commit()
        session.refresh(answer)
        return answer


def _outcomes(questions, answers) -> List[QuestionOutcome]:
    """Per-question outcome from stored answers; unanswered ones score zero."""
    outcomes = []
    for question in questions:
        answer = answers.get(question.id)
        if answer is not None:
            awarded, correct = answer.points_awarded or 0.0, answer.is_correct
        elif question.type == QuestionType.ESSAY.value:
            awarded, correct = 0.0, None
        else:
            awarded, correct = 0.0, False
        outcomes.append(QuestionOutcome(
            question_id=question.id,
            question_type=question.type,
            points_possible=float(question.points or 0),
            points_awarded=awarded,
            is_correct=correct,
            answer_id=answer.id if answer else None,
            selected_option_id=answer.selected_option_id if answer else None,
            answer_text=answer.answer_text if answer else None,
        ))
    return outcomes


def _saved_answer(session, attempt_id: int, question_id: int):
    q = select(StudentAnswer).where(
        StudentAnswer.attempt_id == attempt_id,
        StudentAnswer.question_id == question_id,
    )
    return session.exec(q).first()


def _answers_by_question(session, attempt_id: int):
    q = select(StudentAnswer).where(StudentAnswer.attempt_id == attempt_id)
    return {a.question_id: a for a in session.exec(q)}


def _stored_result(session, attempt: Attempt) -> SubmissionResult:
    questions = load_questions(session, attempt.quiz_id)
    return SubmissionResult(attempt, _outcomes(questions, _answers_by_question(session, attempt.id)))


def submit_attempt(attempt_id: int, student_id: int, now: datetime | None = None) -> SubmissionResult:
    """Score and finalise an attempt exactly once.

    Submitting an already submitted attempt returns the stored result and
    writes nothing.
    """
    now = _now(now)
    with session_scope() as session:
        attempt = _owned_attempt(session, attempt_id, student_id)
        if attempt.is_completed:
            return _stored_result(session, attempt)

        questions = load_questions(session, attempt.quiz_id)
        options = load_options(session, [q.id for q in questions])
        answers = _answers_by_question(session, attempt.id)

        earned = 0.0
        for question in questions:
            answer = answers.get(question.id)
            graded = grade_answer(question, options[question.id], answer)
            earned += graded.points_awarded
            if answer is not None:
                answer.points_awarded = graded.points_awarded
                answer.is_correct = graded.is_correct
                session.add(answer)
        session.flush()

        max_score = max_score_for(questions)
        score = round(score_percentage(earned, max_score), 2)
        elapsed = max(0, int((now - as_utc(attempt.started_at)).total_seconds()))

        finalize = (
            update(Attempt)
            .where(Attempt.id == attempt.id, Attempt.is_completed == False)  # noqa: E712
            .values(
                is_completed=True,
                submitted_at=now,
                score=score,
                max_score=max_score,
                points_earned=earned,
                time_taken_seconds=elapsed,
            )
        )
        if session.connection().execute(finalize).rowcount != 1:
            # another submit finalised it first; keep its result
            session.rollback()
            attempt = session.get(Attempt, attempt_id)
            logger.info("Attempt %s already submitted concurrently", attempt_id)
            return _stored_result(session, attempt)

        session.commit()
        session.refresh(attempt)
        logger.info(
            "Attempt %s submitted: %.2f%% (%s/%s points)",
            attempt.id, score, earned, max_score,
        )
        return _stored_result(session, attempt)


def _option_text(options, option_id):
    for opt in options:
        if opt.id == option_id:
            return opt.text
    return None


def build_result_view(attempt_id: int, requester_id: int, requester_role: str):
    """Presentation-ready result of an attempt.

    Students of a quiz whose show_results flag is off get HIDDEN in place of
    the score, grade, correctness, awarded points, correct answers and
    explanations. Correct answers also stay hidden from students while the
    attempt is in progress.
    """
    try:
        role = Role(requester_role).value
    except ValueError:
        raise PermissionDenied(f"Unknown role: {requester_role}") from None
    with session_scope() as session:
        attempt = session.get(Attempt, attempt_id)
        if not attempt:
            raise NotFound("Attempt not found")
        quiz = session.get(Quiz, attempt.quiz_id)
        if role == Role.ADMIN.value:
            if quiz.author_id != requester_id:
                raise NotFound("Attempt not found")
        elif attempt.user_id != requester_id:
            raise NotFound("Attempt not found")

        is_admin = role == Role.ADMIN.value
        results_visible = is_admin or quiz.show_results
        answers_visible = is_admin or (quiz.show_results and attempt.is_completed)

        questions = load_questions(session, quiz.id)
        options = load_options(session, [q.id for q in questions])
        outcomes = _outcomes(questions, _answers_by_question(session, attempt.id))
        student = session.get(User, attempt.user_id)

        def graded(value):
            if not attempt.is_completed:
                return None
            return value if results_visible else HIDDEN

        rows = []
        for question, outcome in zip(questions, outcomes):
            opts = options[question.id]
            right = correct_option(opts)
            if outcome.selected_option_id is not None:
                your_answer = _option_text(opts, outcome.selected_option_id)
            else:
                your_answer = outcome.answer_text
            rows.append({
                'question_id': question.id,
                'order_index': question.order_index,
                'type': question.type,
                'text': question.text,
                'points': outcome.points_possible,
                'options': [{'id': o.id, 'text': o.text} for o in opts],
                'selected_option_id': outcome.selected_option_id,
                'your_answer': your_answer,
                'is_correct': graded(outcome.is_correct),
                'points_awarded': graded(outcome.points_awarded),
                'correct_answer': (right.text if right else None) if answers_visible else HIDDEN,
                'explanation': question.explanation if answers_visible else HIDDEN,
            })

        correct_count = sum(1 for o in outcomes if o.is_correct)
        return {
            'attempt_id': attempt.id,
            'quiz_id': quiz.id,
            'quiz_title': quiz.title,
            'student_id': attempt.user_id,
            'student_name': student.full_name if student else '',
            'attempt_number': attempt.attempt_number,
            'status': 'submitted' if attempt.is_completed else 'in_progress',
            'started_at': as_utc(attempt.started_at).isoformat(),
            'submitted_at': as_utc(attempt.submitted_at).isoformat() if attempt.submitted_at else None,
            'time_taken_seconds': attempt.time_taken_seconds,
            'results_visible': results_visible,
            'score': graded(attempt.score),
            'grade': graded(letter_grade(attempt.score)),
            'points_earned': graded(attempt.points_earned),
            'max_score': max_score_for(questions),
            'correct_count': graded(correct_count),
            'question_count': len(questions),
            'needs_grading': any(q.type == QuestionType.ESSAY.value for q in questions),
            'questions': rows,
        }


def join_with_quiz_code(code: str, student_id: int, now: datetime | None = None) -> Attempt:
    """Find a quiz by its 6-character code and start (or resume) an attempt.

    Unknown codes and quizzes of classes the student is not in both fail
    with CodeNotFound.
    """
    code = normalize_quiz_code(code)
    if len(code) != QUIZ_CODE_LENGTH:
        raise CodeNotFound("Quiz codes are exactly 6 characters long")
    with session_scope() as session:
        quiz = session.exec(select(Quiz).where(Quiz.quiz_code == code)).first()
        if not quiz or not is_enrolled(session, quiz.class_id, student_id):
            logger.info("Quiz code lookup failed for user %s", student_id)
            raise CodeNotFound("Quiz not found")
        quiz_id = quiz.id
    return start_attempt(quiz_id, student_id, now=now)


def get_attempt_questions(attempt_id: int, student_id: int):
    """Questions for taking an in-progress attempt, without correctness data."""
    with session_scope() as session:
        attempt = _owned_attempt(session, attempt_id, student_id)
        if attempt.is_completed:
            raise AttemptClosed("Attempt already submitted")
        quiz = session.get(Quiz, attempt.quiz_id)
        questions = load_questions(session, quiz.id)
        if quiz.randomize_questions:
            # stable per attempt so reloading keeps the order
            random.Random(attempt.id).shuffle(questions)
        options = load_options(session, [q.id for q in questions])
        answers = _answers_by_question(session, attempt.id)
        deadline = attempt_deadline(quiz, attempt.started_at)

        items = []
        for question in questions:
            saved = answers.get(question.id)
            items.append({
                'question_id': question.id,
                'type': question.type,
                'text': question.text,
                'points': question.points,
                'options': [{'id': o.id, 'text': o.text} for o in options[question.id]],
                'selected_option_id': saved.selected_option_id if saved else None,
                'answer_text': saved.answer_text if saved else None,
            })
        return {
            'attempt_id': attempt.id,
            'quiz_id': quiz.id,
            'quiz_title': quiz.title,
            'instructions': quiz.instructions,
            'attempt_number': attempt.attempt_number,
            'deadline': deadline.isoformat() if deadline else None,
            'questions': items,
        }


def get_student_attempts(student_id: int):
    with session_scope() as session:
        q = (
            select(Attempt, Quiz, Class)
            .join(Quiz, Quiz.id == Attempt.quiz_id)
            .join(Class, Class.id == Quiz.class_id)
            .where(Attempt.user_id == student_id)
            .order_by(Attempt.started_at.desc())
        )
        results = []
        for at, quiz, cls in session.exec(q):
            visible = quiz.show_results
            results.append({
                'attempt_id': at.id,
                'quiz_id': quiz.id,
                'quiz_title': quiz.title,
                'class_name': cls.name,
                'attempt_number': at.attempt_number,
                'status': 'submitted' if at.is_completed else 'in_progress',
                'submitted_at': as_utc(at.submitted_at).isoformat() if at.submitted_at else None,
                'score': (at.score if visible else HIDDEN) if at.is_completed else None,
                'results_visible': visible,
            })
        return results


def get_student_dashboard(student_id: int, now: datetime | None = None):
    """Home-page summary for a student.

    Upcoming quizzes are the available ones starting within the next seven
    days. Scores of quizzes that hide results stay out of the average.
    """
    now = _now(now)
    classes = get_user_classes(student_id)
    available = get_available_quizzes(student_id, now=now)
    attempts = get_student_attempts(student_id)

    next_week = now + timedelta(days=7)
    upcoming = [
        row for row in available
        if row['quiz'].scheduled_start is not None
        and now <= as_utc(row['quiz'].scheduled_start) <= next_week
    ]
    submitted = [a for a in attempts if a['status'] == 'submitted']
    scores = [a['score'] for a in submitted if a['results_visible'] and a['score'] is not None]
    return {
        'enrolled_classes': classes,
        'available_quizzes': available,
        'upcoming_quizzes': upcoming,
        'recent_attempts': attempts[:5],
        'stats': {
            'enrolled_classes': len(classes),
            'available_quizzes': len(available),
            'completed_quizzes': len(submitted),
            'average_score': sum(scores) / len(scores) if scores else None,
        },
    }
