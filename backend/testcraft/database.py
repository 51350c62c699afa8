"""Database engine and helpers.

This module configures the SQLModel/SQLAlchemy engine used by the
store and provides small helpers for the application and tests. Unless
`DATABASE_URL` is set, a SQLite file `testcraft.db` is created next to
the package directory.
"""

from pathlib import Path

from sqlmodel import SQLModel, create_engine, Session

from .config import settings

BASE = Path(__file__).resolve().parent.parent
DB_URL = settings.DATABASE_URL or f"sqlite:///{BASE / 'testcraft.db'}"


def make_engine(url: str):
    """Build an engine, relaxing SQLite's same-thread check.

    Guard evaluation runs in a worker thread while the request session
    is opened on another, so SQLite connections must be shareable.
    """
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, echo=False, connect_args=connect_args)


engine = make_engine(DB_URL)


def create_db_and_tables(bind=None):
    """Create database tables using SQLModel metadata.

    This is intended for local development and tests; production
    deployments should manage the schema with a migration tool.
    """
    from . import models  # noqa: F401  (register tables on the metadata)
    SQLModel.metadata.create_all(bind or engine)


def get_session():
    """Yield a database `Session` for FastAPI dependency injection.

    The generator yields a session and ensures it is closed when the
    request scope finishes.
    """
    with Session(engine) as session:
        yield session
