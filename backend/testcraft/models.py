"""SQLModel data models.

This module defines the application's database tables. Table names are
set explicitly so the store can address rows by the plain names used
throughout the services (`tests`, `questions`, `answer_choices`, ...).
"""

from typing import Optional
from datetime import datetime, timezone

from sqlalchemy import Column, JSON
from sqlmodel import SQLModel, Field


class User(SQLModel, table=True):
    """A registered user.

    Fields:
    - `email`: unique login name, stored lower-cased
    - `password_hash`: hashed password string (never store plaintext)
    - `user_metadata`: free-form profile attributes
    - `token_version`: bumped on logout/password reset to revoke tokens
    """
    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, nullable=False, unique=True)
    password_hash: str
    first_name: str = ""
    last_name: str = ""
    user_metadata: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    is_admin: bool = False
    token_version: int = 0
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Test(SQLModel, table=True):
    """A test authored and owned by a single user."""
    __tablename__ = "tests"
    # keep pytest from collecting this class when imported into test modules
    __test__ = False

    id: Optional[int] = Field(default=None, primary_key=True)
    owner_id: int = Field(foreign_key="users.id", index=True)
    title: str
    description: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Question(SQLModel, table=True):
    """A question belonging to a `Test`."""
    __tablename__ = "questions"

    id: Optional[int] = Field(default=None, primary_key=True)
    test_id: int = Field(foreign_key="tests.id", index=True)
    text: str


class AnswerChoice(SQLModel, table=True):
    """A possible answer for a `Question`; position is id order."""
    __tablename__ = "answer_choices"

    id: Optional[int] = Field(default=None, primary_key=True)
    question_id: int = Field(foreign_key="questions.id", index=True)
    text: str


class Answer(SQLModel, table=True):
    """The correct `AnswerChoice` of a question (at most one per question)."""
    __tablename__ = "answers"

    id: Optional[int] = Field(default=None, primary_key=True)
    question_id: int = Field(foreign_key="questions.id", unique=True)
    choice_id: int = Field(foreign_key="answer_choices.id")


TABLES = {
    "users": User,
    "tests": Test,
    "questions": Question,
    "answer_choices": AnswerChoice,
    "answers": Answer,
}
