import pytest

from quizroom.auth import authenticate_user, create_user, get_user_by_id
from quizroom.errors import DuplicateUser, NotFound


def test_create_user_hashes_password():
    user = create_user('Ada@Example.com ', 'secret', full_name='Ada', index_number='S-001')
    assert user.email == 'ada@example.com'
    assert user.role == 'student'
    assert user.password_hash != 'secret'
    assert get_user_by_id(user.id).email == 'ada@example.com'


def test_authenticate_by_email_or_index_number():
    user = create_user('grace@example.com', 'hopper', index_number='S-002')
    assert authenticate_user('GRACE@example.com', 'hopper').id == user.id
    assert authenticate_user('S-002', 'hopper').id == user.id
    assert authenticate_user('grace@example.com', 'wrong') is None
    assert authenticate_user('nobody@example.com', 'hopper') is None


def test_duplicates_are_rejected():
    create_user('alan@example.com', 'x', index_number='S-003')
    with pytest.raises(DuplicateUser):
        create_user('ALAN@example.com', 'y')
    with pytest.raises(DuplicateUser):
        create_user('other@example.com', 'y', index_number='S-003')


def test_unknown_role_and_user():
    with pytest.raises(ValueError):
        create_user('t@example.com', 'x', role='teacher')
    with pytest.raises(NotFound):
        get_user_by_id(12345)
