"""Pydantic request/response schemas used by the API.

Schemas keep API input/output shapes stable and provide validation for
controller handlers and tests.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class RegisterIn(BaseModel):
    """Payload for user registration."""
    email: str
    password: str
    first_name: str = ""
    last_name: str = ""


class LoginIn(BaseModel):
    """Payload for the login endpoint."""
    email: str
    password: str


class TokenOut(BaseModel):
    """Authentication response containing an access token."""
    access_token: str


class ProfileUpdateIn(BaseModel):
    """Profile changes; unknown keys are stored as free-form metadata."""
    model_config = ConfigDict(extra="allow")

    first_name: Optional[str] = None
    last_name: Optional[str] = None


class ResetRequestIn(BaseModel):
    email: str


class ResetConfirmIn(BaseModel):
    token: str
    password: str


class TestIn(BaseModel):
    """Request format for creating a test."""
    title: str
    description: Optional[str] = None


class TestUpdateIn(BaseModel):
    """Partial update of a test; only fields sent are changed."""
    title: Optional[str] = None
    description: Optional[str] = None


class ChoiceIn(BaseModel):
    """A submitted answer choice (text only, ids are assigned by the store)."""
    text: str


class QuestionIn(BaseModel):
    """Request format for creating a question with its choices."""
    text: str
    answer_choices: List[ChoiceIn] = []
    correct_index: Optional[int] = None


class QuestionUpdateIn(BaseModel):
    """Edited question; choices are reconciled against the stored ones."""
    text: str
    answer_choices: List[ChoiceIn] = []


class CorrectAnswerIn(BaseModel):
    choice_id: int
