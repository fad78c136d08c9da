from datetime import timedelta

import pytest

from factories import NOW
from quizroom.models import Question, QuestionOption, Quiz, StudentAnswer
from quizroom.scoring import (
    AttemptAllowance,
    attempt_deadline,
    can_transition,
    grade_answer,
    is_joinable,
    letter_grade,
    max_score_for,
    score_percentage,
)


def _question(qtype='multiple_choice', points=2):
    q = Question(id=1, quiz_id=1, type=qtype, text='Q', points=points, order_index=1)
    opts = [
        QuestionOption(id=10, question_id=1, text='right', is_correct=True, order_index=1),
        QuestionOption(id=11, question_id=1, text='wrong', is_correct=False, order_index=2),
    ]
    return q, opts


def _quiz(status, start=None, end=None, duration=None):
    return Quiz(
        class_id=1, author_id=1, title='Q', quiz_code='ABC123', status=status,
        scheduled_start=start, scheduled_end=end, duration_minutes=duration,
    )


def test_allowance():
    assert AttemptAllowance.from_setting(-1).unbounded
    assert AttemptAllowance.from_setting(None).remaining(50) is None
    two = AttemptAllowance.from_setting(2)
    assert two.permits(1)
    assert not two.permits(2)
    assert two.remaining(5) == 0
    with pytest.raises(ValueError):
        AttemptAllowance.from_setting(0)


def test_grade_answer():
    q, opts = _question()
    assert grade_answer(q, opts, StudentAnswer(attempt_id=1, question_id=1, selected_option_id=10)).points_awarded == 2
    wrong = grade_answer(q, opts, StudentAnswer(attempt_id=1, question_id=1, selected_option_id=11))
    assert (wrong.points_awarded, wrong.is_correct) == (0, False)
    missing = grade_answer(q, opts, None)
    assert (missing.points_awarded, missing.is_correct) == (0, False)

    e, _ = _question('essay', points=5)
    essay_grade = grade_answer(e, [], StudentAnswer(attempt_id=1, question_id=1, answer_text='words'))
    assert (essay_grade.points_awarded, essay_grade.is_correct) == (0, None)


def test_percentages_and_grades():
    assert score_percentage(0, 0) == 0
    assert score_percentage(3, 4) == 75
    q, _ = _question(points=2)
    e, _ = _question('essay', points=3)
    assert max_score_for([q, e]) == 5
    assert [letter_grade(s) for s in (95, 90, 85, 72, 60, 59.99)] == ['A', 'A', 'B', 'C', 'D', 'F']
    assert letter_grade(None) is None


def test_joinability():
    past_window = {'start': NOW - timedelta(days=2), 'end': NOW - timedelta(days=1)}
    assert is_joinable(_quiz('active', **past_window), NOW)
    assert not is_joinable(_quiz('scheduled', **past_window), NOW)
    assert not is_joinable(_quiz('scheduled'), NOW)
    assert not is_joinable(_quiz('draft'), NOW)
    assert not is_joinable(_quiz('completed'), NOW)
    # naive bounds as read back from SQLite
    naive = _quiz('scheduled', start=(NOW - timedelta(hours=1)).replace(tzinfo=None),
                  end=(NOW + timedelta(hours=1)).replace(tzinfo=None))
    assert is_joinable(naive, NOW)


def test_deadline():
    assert attempt_deadline(_quiz('active'), NOW) is None
    assert attempt_deadline(_quiz('active', duration=30), NOW) == NOW + timedelta(minutes=30)


@pytest.mark.parametrize('current, new, allowed', [
    ('draft', 'scheduled', True),
    ('draft', 'active', True),
    ('active', 'cancelled', True),
    ('active', 'scheduled', False),
    ('completed', 'cancelled', False),
    ('cancelled', 'active', False),
    ('draft', 'archived', False),
])
def test_status_transitions(current, new, allowed):
    assert can_transition(current, new) is allowed
