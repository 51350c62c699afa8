import os
import tempfile
import uuid
from pathlib import Path

# Point the app at a throwaway database before anything imports it.
_DB_DIR = tempfile.mkdtemp(prefix="testcraft-")
os.environ["DATABASE_URL"] = f"sqlite:///{Path(_DB_DIR) / 'test.db'}"

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, create_engine

from testcraft import models, security
from testcraft.database import create_db_and_tables
from testcraft.store import SQLStore


@pytest.fixture
def db():
    """In-memory database session for store/service level tests."""
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    create_db_and_tables(engine)
    with Session(engine) as session:
        yield session


@pytest.fixture
def make_user(db):
    """Create a user and return it."""
    def _make(email=None, is_admin=False, **fields):
        user = models.User(
            email=email or f"{uuid.uuid4().hex[:8]}@example.com",
            password_hash=security.hash_password("secret123"),
            is_admin=is_admin,
            **fields,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make


@pytest.fixture
def store_for(db):
    """Return a store acting as the given user (or anonymously)."""
    def _store(user=None):
        token = security.create_access_token(user) if user is not None else None
        return SQLStore(db, token)
    return _store
