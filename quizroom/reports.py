import csv
import io

from quizroom.db import session_scope
from quizroom.models import Attempt, Class, Question, QuestionType, Quiz, User, as_utc
from quizroom.scoring import letter_grade
from sqlmodel import select

STATUS_FILTERS = ('completed', 'in_progress', 'needs_grading')


def _row_status(row) -> str:
    if not row['submitted_at']:
        return 'in_progress'
    if row['has_essay_questions']:
        return 'needs_grading'
    return 'completed'


def get_results_for_admin(admin_id: int, class_id: int = None, quiz_id: int = None, status: str = None, search: str = None):
    """Return attempt rows for the quizzes an instructor authored.

    status is one of completed/in_progress/needs_grading; search matches
    student name or email, quiz title and class name, case-insensitively.
    """
    if status is not None and status not in STATUS_FILTERS:
        raise ValueError(f"Unknown status filter: {status}")
    with session_scope() as session:
        q = select(Quiz).where(Quiz.author_id == admin_id)
        if class_id is not None:
            q = q.where(Quiz.class_id == class_id)
        if quiz_id is not None:
            q = q.where(Quiz.id == quiz_id)
        quizzes = {quiz.id: quiz for quiz in session.exec(q)}
        if not quizzes:
            return []

        classes = {
            c.id: c for c in session.exec(
                select(Class).where(Class.id.in_(list({qz.class_id for qz in quizzes.values()})))
            )
        }
        essay_quizzes = set(session.exec(
            select(Question.quiz_id).where(
                Question.quiz_id.in_(list(quizzes)),
                Question.type == QuestionType.ESSAY.value,
            )
        ))

        aquery = (
            select(Attempt, User)
            .join(User, User.id == Attempt.user_id)
            .where(Attempt.quiz_id.in_(list(quizzes)))
            .order_by(Attempt.started_at.desc())
        )
        rows = []
        for at, user in session.exec(aquery):
            quiz = quizzes[at.quiz_id]
            cls = classes.get(quiz.class_id)
            row = {
                'attempt_id': at.id,
                'quiz_id': quiz.id,
                'quiz_title': quiz.title,
                'class_id': quiz.class_id,
                'class_name': cls.name if cls else '',
                'student_id': user.id,
                'student_name': user.full_name or '',
                'student_email': user.email,
                'student_index_number': user.index_number or '',
                'attempt_number': at.attempt_number,
                'score': at.score,
                'grade': letter_grade(at.score),
                'max_score': at.max_score,
                'submitted_at': as_utc(at.submitted_at).isoformat() if at.submitted_at else None,
                'time_taken_seconds': at.time_taken_seconds,
                'has_essay_questions': quiz.id in essay_quizzes,
            }
            row['status'] = _row_status(row)
            rows.append(row)

    if status is not None:
        rows = [r for r in rows if r['status'] == status]
    if search:
        needle = search.strip().lower()
        rows = [
            r for r in rows
            if any(needle in (r[k] or '').lower() for k in ('student_name', 'student_email', 'quiz_title', 'class_name'))
        ]
    return rows


def summarize_results(rows):
    submitted = [r for r in rows if r['submitted_at']]
    scored = [r for r in submitted if r['score'] is not None]
    average = sum(r['score'] for r in scored) / len(scored) if scored else 0.0
    return {
        'total_attempts': len(rows),
        'submitted_attempts': len(submitted),
        'completed_attempts': sum(1 for r in submitted if r['status'] == 'completed'),
        'needs_grading': sum(1 for r in rows if r['status'] == 'needs_grading'),
        'average_score': average,
        'unique_students': len({r['student_email'] for r in rows}),
    }


def format_duration(seconds):
    if not seconds:
        return "N/A"
    minutes, secs = divmod(int(seconds), 60)
    if minutes == 0:
        return f"{secs}s"
    if secs == 0:
        return f"{minutes}m"
    return f"{minutes}m {secs}s"


def export_results_csv(rows) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow([
        'Student Name', 'Email', 'Index Number', 'Quiz Title', 'Class',
        'Score', 'Total Points', 'Submitted At', 'Time Taken', 'Status',
    ])
    for r in rows:
        writer.writerow([
            r['student_name'],
            r['student_email'],
            r['student_index_number'],
            r['quiz_title'],
            r['class_name'],
            f"{round(r['score'])}%" if r['score'] is not None else 'Pending',
            r['max_score'] if r['max_score'] is not None else '',
            r['submitted_at'] or 'Not submitted',
            format_duration(r['time_taken_seconds']),
            'Completed' if r['submitted_at'] else 'In Progress',
        ])
    return buf.getvalue()
