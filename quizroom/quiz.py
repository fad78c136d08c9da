from typing import List, Dict, Any
import logging
import random
import string
from collections import defaultdict
from datetime import datetime

from quizroom.db import session_scope
from quizroom.errors import (
    InvalidStatusTransition,
    NotFound,
    PermissionDenied,
)
from quizroom.models import (
    Attempt,
    Class,
    Enrollment,
    Question,
    QuestionOption,
    QuestionType,
    Quiz,
    QuizStatus,
    as_utc,
    now_utc,
)
from quizroom.scoring import AttemptAllowance, can_transition, is_joinable
from sqlmodel import select

logger = logging.getLogger(__name__)

QUIZ_CODE_LENGTH = 6
QUIZ_CODE_ALPHABET = string.ascii_uppercase + string.digits

SETTING_FIELDS = (
    'description',
    'instructions',
    'scheduled_start',
    'scheduled_end',
    'duration_minutes',
    'attempts_allowed',
    'show_results',
    'randomize_questions',
)


def _generate_quiz_code() -> str:
    return ''.join(random.choices(QUIZ_CODE_ALPHABET, k=QUIZ_CODE_LENGTH))


def normalize_quiz_code(code: str | None) -> str:
    return (code or '').strip().upper()


def _validate_settings(settings: Dict[str, Any]) -> Dict[str, Any]:
    unknown = set(settings) - set(SETTING_FIELDS)
    if unknown:
        raise ValueError(f"Unknown quiz settings: {', '.join(sorted(unknown))}")
    cleaned = dict(settings)
    if 'attempts_allowed' in cleaned:
        cleaned['attempts_allowed'] = AttemptAllowance.from_setting(cleaned['attempts_allowed']).limit
    duration = cleaned.get('duration_minutes')
    if duration is not None and duration <= 0:
        raise ValueError("duration_minutes must be positive")
    start, end = as_utc(cleaned.get('scheduled_start')), as_utc(cleaned.get('scheduled_end'))
    if start is not None and end is not None and end <= start:
        raise ValueError("scheduled_end must be after scheduled_start")
    return cleaned


def _validate_question(q: Dict[str, Any], position: int):
    qtype = QuestionType(q.get('type')).value
    if not (q.get('text') or '').strip():
        raise ValueError(f"Question {position}: text is required")
    points = q.get('points', 1)
    if points is None or points < 0:
        raise ValueError(f"Question {position}: points must be non-negative")
    options = q.get('options') or []
    if qtype == QuestionType.ESSAY.value:
        if options:
            raise ValueError(f"Question {position}: essay questions take no options")
        return
    if qtype == QuestionType.TRUE_FALSE.value and not options:
        # default True/False pair, correct_answer picks one
        answer = bool(q.get('correct_answer'))
        options = [
            {'text': 'True', 'is_correct': answer},
            {'text': 'False', 'is_correct': not answer},
        ]
        q['options'] = options
    if len(options) < 2:
        raise ValueError(f"Question {position}: at least two options are required")
    if sum(1 for o in options if o.get('is_correct')) != 1:
        raise ValueError(f"Question {position}: exactly one option must be correct")


def create_quiz(class_id: int, title: str, author_id: int, questions: List[Dict[str, Any]], **settings) -> Quiz:
    """questions: list of dicts: {type, text, points, explanation(optional),
    options: [{text, is_correct}] for multiple_choice/true_false}

    true_false questions may give correct_answer=True/False instead of options.
    """
    settings = _validate_settings(settings)
    questions = [dict(q) for q in questions]
    for pos, q in enumerate(questions, start=1):
        _validate_question(q, pos)

    with session_scope() as session:
        cls = session.get(Class, class_id)
        if not cls:
            raise NotFound("Class not found")
        if cls.owner_id != author_id:
            raise PermissionDenied("Only the class owner can add quizzes")

        code = _generate_quiz_code()
        while session.exec(select(Quiz.id).where(Quiz.quiz_code == code)).first():
            code = _generate_quiz_code()

        quiz = Quiz(class_id=class_id, title=title, author_id=author_id, quiz_code=code, **settings)
        session.add(quiz)
        session.flush()

        for pos, q in enumerate(questions, start=1):
            question = Question(
                quiz_id=quiz.id,
                type=q['type'],
                text=q['text'],
                points=float(q.get('points', 1)),
                order_index=pos,
                explanation=q.get('explanation'),
            )
            session.add(question)
            session.flush()
            for opt_pos, opt in enumerate(q.get('options') or [], start=1):
                session.add(QuestionOption(
                    question_id=question.id,
                    text=opt['text'],
                    is_correct=bool(opt.get('is_correct')),
                    order_index=opt_pos,
                ))
        session.commit()
        session.refresh(quiz)
        logger.info("Quiz %s created in class %s with %d questions", quiz.id, class_id, len(questions))
        return quiz


def get_quiz(quiz_id: int) -> Quiz:
    with session_scope() as session:
        quiz = session.get(Quiz, quiz_id)
        if not quiz:
            raise NotFound("Quiz not found")
        return quiz


def get_quiz_by_code(code: str):
    code = normalize_quiz_code(code)
    if len(code) != QUIZ_CODE_LENGTH:
        return None
    with session_scope() as session:
        return session.exec(select(Quiz).where(Quiz.quiz_code == code)).first()


def get_quizzes_for_class(class_id: int):
    with session_scope() as session:
        q = select(Quiz).where(Quiz.class_id == class_id).order_by(Quiz.created_at)
        return list(session.exec(q))


def get_quizzes_for_admin(admin_id: int):
    with session_scope() as session:
        q = select(Quiz).where(Quiz.author_id == admin_id).order_by(Quiz.created_at.desc())
        return list(session.exec(q))


def load_questions(session, quiz_id: int):
    q = select(Question).where(Question.quiz_id == quiz_id).order_by(Question.order_index)
    return list(session.exec(q))


def load_options(session, question_ids):
    """question_id -> options in display order"""
    by_question = defaultdict(list)
    if not question_ids:
        return by_question
    q = (
        select(QuestionOption)
        .where(QuestionOption.question_id.in_(list(question_ids)))
        .order_by(QuestionOption.question_id, QuestionOption.order_index)
    )
    for opt in session.exec(q):
        by_question[opt.question_id].append(opt)
    return by_question


def get_questions_for_quiz(quiz_id: int):
    with session_scope() as session:
        return load_questions(session, quiz_id)


def get_options_for_questions(question_ids):
    with session_scope() as session:
        return dict(load_options(session, question_ids))


def _require_author(session, quiz_id: int, author_id: int) -> Quiz:
    quiz = session.get(Quiz, quiz_id)
    if not quiz:
        raise NotFound("Quiz not found")
    if quiz.author_id != author_id:
        raise PermissionDenied("Only the quiz author can do this")
    return quiz


def update_quiz(quiz_id: int, author_id: int, title: str | None = None, **settings) -> Quiz:
    settings = _validate_settings(settings)
    with session_scope() as session:
        quiz = _require_author(session, quiz_id, author_id)
        if quiz.status in (QuizStatus.COMPLETED.value, QuizStatus.CANCELLED.value):
            raise InvalidStatusTransition("Finished quizzes cannot be edited")
        if title is not None:
            quiz.title = title
        for key, value in settings.items():
            setattr(quiz, key, value)
        start, end = as_utc(quiz.scheduled_start), as_utc(quiz.scheduled_end)
        if start and end and end <= start:
            raise ValueError("scheduled_end must be after scheduled_start")
        quiz.updated_at = now_utc()
        session.add(quiz)
        session.commit()
        session.refresh(quiz)
        return quiz


def set_quiz_status(quiz_id: int, author_id: int, status: str) -> Quiz:
    status = QuizStatus(status).value
    with session_scope() as session:
        quiz = _require_author(session, quiz_id, author_id)
        if quiz.status == status:
            return quiz
        if not can_transition(quiz.status, status):
            raise InvalidStatusTransition(f"Cannot move quiz from {quiz.status} to {status}")
        previous = quiz.status
        quiz.status = status
        quiz.updated_at = now_utc()
        session.add(quiz)
        session.commit()
        session.refresh(quiz)
        logger.info("Quiz %s status %s -> %s", quiz_id, previous, status)
        return quiz


def delete_quiz(quiz_id: int, author_id: int) -> bool:
    with session_scope() as session:
        _require_author(session, quiz_id, author_id)
        if session.exec(select(Attempt.id).where(Attempt.quiz_id == quiz_id)).first():
            raise PermissionDenied("Quizzes with attempts cannot be deleted")
        questions = load_questions(session, quiz_id)
        options = load_options(session, [q.id for q in questions])
        for opts in options.values():
            for opt in opts:
                session.delete(opt)
        for question in questions:
            session.delete(question)
        session.delete(session.get(Quiz, quiz_id))
        session.commit()
        logger.info("Quiz %s deleted", quiz_id)
        return True


def get_available_quizzes(student_id: int, now: datetime | None = None):
    """Quizzes visible to a student with their per-student attempt state."""
    now = now or now_utc()
    visible = (QuizStatus.SCHEDULED.value, QuizStatus.ACTIVE.value, QuizStatus.COMPLETED.value)
    with session_scope() as session:
        q = (
            select(Quiz, Class)
            .join(Class, Class.id == Quiz.class_id)
            .join(Enrollment, Enrollment.class_id == Class.id)
            .where(Enrollment.user_id == student_id, Quiz.status.in_(visible))
            .order_by(Quiz.scheduled_start, Quiz.id)
        )
        rows = list(session.exec(q))
        quiz_ids = [quiz.id for quiz, _ in rows]
        attempts_by_quiz = defaultdict(list)
        if quiz_ids:
            aq = select(Attempt).where(Attempt.user_id == student_id, Attempt.quiz_id.in_(quiz_ids))
            for at in session.exec(aq):
                attempts_by_quiz[at.quiz_id].append(at)

        results = []
        for quiz, cls in rows:
            attempts = attempts_by_quiz[quiz.id]
            used = len(attempts)
            submitted = sum(1 for a in attempts if a.is_completed)
            allowance = AttemptAllowance.from_setting(quiz.attempts_allowed)
            exhausted = not allowance.permits(used)
            results.append({
                'quiz': quiz,
                'class_name': _class_label(cls),
                'attempts_used': used,
                'attempts_remaining': allowance.remaining(used),
                'submitted_attempts': submitted,
                'has_completed': submitted > 0 and (exhausted or allowance.limit == 1),
                'can_retake': submitted > 0 and not exhausted and allowance.limit != 1,
                'in_progress': any(not a.is_completed for a in attempts),
                'joinable': is_joinable(quiz, now),
            })
        return results


def _class_label(cls: Class) -> str:
    extra = " ".join(p for p in (cls.semester, cls.academic_year) if p)
    return f"{cls.name} - {extra}" if extra else cls.name
