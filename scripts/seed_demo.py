import argparse
import random
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from sqlmodel import select  # noqa: E402

from quizroom.attempts import record_answer, start_attempt, submit_attempt  # noqa: E402
from quizroom.classes import create_class, join_class_by_code  # noqa: E402
from quizroom.db import get_session, init_db  # noqa: E402
from quizroom.logging_config import setup_logging  # noqa: E402
from quizroom.models import QuestionOption, User  # noqa: E402
from quizroom.quiz import create_quiz, get_questions_for_quiz, set_quiz_status  # noqa: E402
from quizroom.auth import create_user  # noqa: E402


SEED_USER_PREFIX = "seed_student"
SEED_QUIZ_PREFIX = "[SEED]"


def _get_or_create_user(email, name, role, index_number=None):
    with get_session() as session:
        user = session.exec(select(User).where(User.email == email)).first()
    if user:
        return user
    return create_user(email, "seed-password", full_name=name, role=role, index_number=index_number)


def _question_defs(quiz_no, count):
    defs = []
    for qn in range(count):
        if qn % 3 == 0:
            defs.append({
                "type": "true_false",
                "text": f"Seed TF question {quiz_no}-{qn+1}",
                "correct_answer": True,
                "points": 1,
            })
        elif qn % 5 == 4:
            defs.append({
                "type": "essay",
                "text": f"Seed essay question {quiz_no}-{qn+1}",
                "points": 2,
            })
        else:
            defs.append({
                "type": "multiple_choice",
                "text": f"Seed MCQ {quiz_no}-{qn+1}",
                "options": [
                    {"text": "Option A", "is_correct": True},
                    {"text": "Option B"},
                    {"text": "Option C"},
                    {"text": "Option D"},
                ],
                "points": 1,
                "explanation": "Option A is the seeded answer.",
            })
    return defs


def main():
    parser = argparse.ArgumentParser(description="Seed a demo class with quizzes and scored attempts.")
    parser.add_argument("--owner-email", default="seed_admin@example.com")
    parser.add_argument("--students", type=int, default=12)
    parser.add_argument("--quizzes", type=int, default=3)
    parser.add_argument("--questions", type=int, default=6)
    args = parser.parse_args()

    setup_logging()
    init_db()
    random.seed(42)

    owner = _get_or_create_user(args.owner_email, "Seed Instructor", "admin")
    cls = create_class("Seed Class", owner.id, description="Demo data", semester="Fall", academic_year="2026")

    students = []
    for i in range(args.students):
        email = f"{SEED_USER_PREFIX}+{cls.code.lower()}_{i+1}@example.com"
        student = _get_or_create_user(email, f"Seed Student {i+1}", "student")
        join_class_by_code(cls.code, student.id)
        students.append(student)

    for qi in range(args.quizzes):
        quiz = create_quiz(
            cls.id,
            f"{SEED_QUIZ_PREFIX} Demo Quiz {qi+1}",
            owner.id,
            _question_defs(qi + 1, args.questions),
            attempts_allowed=2,
            show_results=qi % 2 == 0,
        )
        set_quiz_status(quiz.id, owner.id, "active")
        questions = get_questions_for_quiz(quiz.id)
        with get_session() as session:
            options = list(session.exec(
                select(QuestionOption).where(QuestionOption.question_id.in_([q.id for q in questions]))
            ))

        # weak/average/strong segments
        for idx, student in enumerate(students):
            success_rate = (0.35, 0.6, 0.85)[idx % 3]
            attempt = start_attempt(quiz.id, student.id)
            for q in questions:
                if q.type == "essay":
                    record_answer(attempt.id, student.id, q.id, text="Seeded essay answer.")
                    continue
                opts = [o for o in options if o.question_id == q.id]
                right = [o for o in opts if o.is_correct]
                wrong = [o for o in opts if not o.is_correct]
                pick = right[0] if random.random() < success_rate else random.choice(wrong)
                record_answer(attempt.id, student.id, q.id, option_id=pick.id)
            submit_attempt(attempt.id, student.id)

    print(
        f"Seed complete for class {cls.name} ({cls.code}). "
        f"Students={args.students}, Quizzes={args.quizzes}"
    )


if __name__ == "__main__":
    main()
