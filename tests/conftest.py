import os
import pytest

TEST_DB = os.path.join(os.path.dirname(__file__), 'test_app.db')
os.environ['DATABASE_URL'] = f"sqlite:///{TEST_DB}"

from quizroom.db import drop_db, engine, get_session, init_db  # noqa: E402
from quizroom.classes import create_class, join_class_by_code  # noqa: E402
from quizroom.models import User  # noqa: E402
from quizroom.quiz import create_quiz, set_quiz_status  # noqa: E402


@pytest.fixture(scope='session', autouse=True)
def remove_db_file():
    yield
    engine.dispose()
    try:
        os.remove(TEST_DB)
    except OSError:
        pass


@pytest.fixture(autouse=True)
def reset_db():
    # Ensure a clean schema for every test
    drop_db()
    init_db()
    yield


@pytest.fixture
def make_user():
    counter = {'n': 0}

    def _make(role='student', name=None, index_number=None):
        counter['n'] += 1
        n = counter['n']
        with get_session() as s:
            user = User(
                email=f"{role}{n}@example.com",
                password_hash='x',
                full_name=name or f"{role.title()} {n}",
                role=role,
                index_number=index_number,
            )
            s.add(user)
            s.commit()
            s.refresh(user)
            return user

    return _make


@pytest.fixture
def teacher(make_user):
    return make_user('admin', name='Teacher')


@pytest.fixture
def student(make_user):
    return make_user('student', name='Student')


@pytest.fixture
def classroom(teacher, student):
    cls = create_class('Biology', teacher.id, semester='Fall', academic_year='2026')
    join_class_by_code(cls.code, student.id)
    return cls


@pytest.fixture
def make_quiz(teacher, classroom):
    """Create a quiz in the shared class and (by default) activate it."""

    def _make(questions, status='active', **settings):
        quiz = create_quiz(classroom.id, 'Quiz', teacher.id, questions, **settings)
        if status != 'draft':
            quiz = set_quiz_status(quiz.id, teacher.id, status)
        return quiz

    return _make
