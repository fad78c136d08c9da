import logging

from quizroom.db import session_scope
from quizroom.errors import DuplicateUser, NotFound
from quizroom.models import Role, User
from sqlmodel import select
from passlib.context import CryptContext

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def create_user(
    email: str,
    password: str,
    full_name: str | None = None,
    role: str = Role.STUDENT.value,
    index_number: str | None = None,
) -> User:
    role = Role(role).value
    email = email.strip().lower()
    with session_scope() as session:
        existing = session.exec(select(User).where(User.email == email)).first()
        if existing:
            raise DuplicateUser("User already exists")
        if index_number:
            q = select(User).where(User.index_number == index_number)
            if session.exec(q).first():
                raise DuplicateUser("Index number already registered")
        user = User(
            email=email,
            password_hash=hash_password(password),
            full_name=full_name,
            role=role,
            index_number=index_number or None,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        logger.info("Created %s account %s", role, user.id)
        return user


def authenticate_user(identifier: str, password: str):
    """identifier is an email address or a student index number."""
    identifier = identifier.strip()
    with session_scope() as session:
        if "@" in identifier:
            q = select(User).where(User.email == identifier.lower())
        else:
            q = select(User).where(User.index_number == identifier)
        user = session.exec(q).first()
        if not user:
            return None
        if verify_password(password, user.password_hash):
            return user
        return None


def get_user_by_id(user_id: int) -> User:
    with session_scope() as session:
        user = session.get(User, user_id)
        if not user:
            raise NotFound("User not found")
        return user
