from contextlib import contextmanager
import logging
import os

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import SQLModel, create_engine, Session

from quizroom.errors import StorageFailure

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./app.db")

connect_args = {}
if DATABASE_URL.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(DATABASE_URL, echo=False, connect_args=connect_args)


def init_db():
    # table classes must be registered on the metadata first
    import quizroom.models  # noqa: F401
    SQLModel.metadata.create_all(engine)


def drop_db():
    import quizroom.models  # noqa: F401
    SQLModel.metadata.drop_all(engine)


def get_session():
    return Session(engine, expire_on_commit=False)


@contextmanager
def session_scope():
    """Session whose database errors surface as StorageFailure."""
    session = get_session()
    try:
        yield session
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception("Storage failure")
        raise StorageFailure(str(exc)) from exc
    finally:
        session.close()
