import pytest

from factories import NOW, essay, mc, tf
from quizroom.attempts import start_attempt, submit_attempt
from quizroom.errors import InvalidStatusTransition, NotFound, PermissionDenied
from quizroom.quiz import (
    QUIZ_CODE_LENGTH,
    create_quiz,
    delete_quiz,
    get_available_quizzes,
    get_options_for_questions,
    get_quiz,
    get_quiz_by_code,
    get_quizzes_for_admin,
    get_quizzes_for_class,
    get_questions_for_quiz,
    set_quiz_status,
    update_quiz,
)


def test_create_quiz_persists_questions_in_order(teacher, classroom):
    quiz = create_quiz(classroom.id, 'Cells', teacher.id, [mc('Q1', points=2), tf('Q2', answer=False), essay('Q3')])
    assert len(quiz.quiz_code) == QUIZ_CODE_LENGTH
    assert quiz.quiz_code == quiz.quiz_code.upper()
    assert quiz.status == 'draft'
    assert quiz.attempts_allowed == 1

    questions = get_questions_for_quiz(quiz.id)
    assert [q.order_index for q in questions] == [1, 2, 3]
    assert [q.type for q in questions] == ['multiple_choice', 'true_false', 'essay']
    options = get_options_for_questions([q.id for q in questions])
    tf_options = options[questions[1].id]
    assert [(o.text, o.is_correct) for o in tf_options] == [('True', False), ('False', True)]
    assert questions[2].id not in options


@pytest.mark.parametrize('bad', [
    {'type': 'multiple_choice', 'text': 'Q', 'options': [{'text': 'a', 'is_correct': True}, {'text': 'b', 'is_correct': True}]},
    {'type': 'multiple_choice', 'text': 'Q', 'options': [{'text': 'a'}, {'text': 'b'}]},
    {'type': 'multiple_choice', 'text': 'Q', 'options': [{'text': 'a', 'is_correct': True}]},
    {'type': 'essay', 'text': 'Q', 'options': [{'text': 'a', 'is_correct': True}]},
    {'type': 'essay', 'text': '  '},
    {'type': 'essay', 'text': 'Q', 'points': -1},
    {'type': 'matching', 'text': 'Q'},
])
def test_invalid_questions_are_rejected(teacher, classroom, bad):
    with pytest.raises(ValueError):
        create_quiz(classroom.id, 'Bad', teacher.id, [bad])


def test_only_class_owner_creates_quizzes(classroom, make_user):
    with pytest.raises(PermissionDenied):
        create_quiz(classroom.id, 'Nope', make_user('admin').id, [mc('Q1')])


def test_unlimited_attempts_sentinel_is_normalised(teacher, classroom):
    quiz = create_quiz(classroom.id, 'Open', teacher.id, [mc('Q1')], attempts_allowed=-1)
    assert quiz.attempts_allowed is None
    with pytest.raises(ValueError):
        create_quiz(classroom.id, 'Zero', teacher.id, [mc('Q1')], attempts_allowed=0)


def test_window_must_be_ordered(teacher, classroom):
    with pytest.raises(ValueError):
        create_quiz(classroom.id, 'W', teacher.id, [mc('Q1')], scheduled_start=NOW, scheduled_end=NOW)


def test_lookup_by_code(teacher, classroom):
    quiz = create_quiz(classroom.id, 'Lookup', teacher.id, [mc('Q1')])
    assert get_quiz_by_code(quiz.quiz_code.lower()).id == quiz.id
    assert get_quiz_by_code('SHORT') is None
    assert get_quiz(quiz.id).title == 'Lookup'
    with pytest.raises(NotFound):
        get_quiz(9999)
    assert [q.id for q in get_quizzes_for_class(classroom.id)] == [quiz.id]
    assert [q.id for q in get_quizzes_for_admin(teacher.id)] == [quiz.id]


def test_status_moves_forward_only(teacher, classroom):
    quiz = create_quiz(classroom.id, 'Flow', teacher.id, [mc('Q1')])
    assert set_quiz_status(quiz.id, teacher.id, 'scheduled').status == 'scheduled'
    assert set_quiz_status(quiz.id, teacher.id, 'active').status == 'active'
    with pytest.raises(InvalidStatusTransition):
        set_quiz_status(quiz.id, teacher.id, 'draft')
    assert set_quiz_status(quiz.id, teacher.id, 'completed').status == 'completed'
    with pytest.raises(InvalidStatusTransition):
        set_quiz_status(quiz.id, teacher.id, 'cancelled')
    with pytest.raises(ValueError):
        set_quiz_status(quiz.id, teacher.id, 'paused')


def test_update_quiz_settings(teacher, classroom, make_user):
    quiz = create_quiz(classroom.id, 'Edit', teacher.id, [mc('Q1')])
    updated = update_quiz(quiz.id, teacher.id, title='Edited', attempts_allowed=3, show_results=False)
    assert updated.title == 'Edited'
    assert updated.attempts_allowed == 3
    assert updated.show_results is False
    with pytest.raises(PermissionDenied):
        update_quiz(quiz.id, make_user('admin').id, title='x')
    with pytest.raises(ValueError):
        update_quiz(quiz.id, teacher.id, colour='blue')


def test_delete_quiz_without_attempts(teacher, classroom, student, make_quiz):
    untouched = make_quiz([mc('Q1')])
    assert delete_quiz(untouched.id, teacher.id) is True
    assert get_questions_for_quiz(untouched.id) == []

    taken = make_quiz([mc('Q1')])
    start_attempt(taken.id, student.id, now=NOW)
    with pytest.raises(PermissionDenied):
        delete_quiz(taken.id, teacher.id)


def test_available_quizzes_for_student(make_quiz, student):
    draft = make_quiz([mc('Q1')], status='draft')
    single = make_quiz([mc('Q1')])
    retake = make_quiz([mc('Q1')], attempts_allowed=3)

    for quiz in (single, retake):
        attempt = start_attempt(quiz.id, student.id, now=NOW)
        submit_attempt(attempt.id, student.id, now=NOW)

    rows = {r['quiz'].id: r for r in get_available_quizzes(student.id, now=NOW)}
    assert draft.id not in rows
    assert rows[single.id]['has_completed'] is True
    assert rows[single.id]['can_retake'] is False
    assert rows[single.id]['attempts_remaining'] == 0
    assert rows[retake.id]['has_completed'] is False
    assert rows[retake.id]['can_retake'] is True
    assert rows[retake.id]['attempts_remaining'] == 2
    assert rows[retake.id]['joinable'] is True
    assert rows[retake.id]['class_name'] == 'Biology - Fall 2026'
