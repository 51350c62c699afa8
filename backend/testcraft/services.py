"""Business logic services used by HTTP controllers.

Services are thin: they validate input, run the ownership check, and
issue store calls in order. Every store call may raise a
`TestcraftError`; services let those propagate and raise `ValueError`
for invalid input, mirroring how the controllers map them to responses.

Multi-step writes fail fast: the first failing call stops the sequence.
"""

import json
import logging
from typing import List, Optional, Sequence

import jwt

from . import security
from .access import acting_user_id, require_question_owner, require_test_owner
from .errors import AuthResolutionFailure, NotFound, TestcraftError
from .reconciler import ReconcileResult, reconcile_answer_choices
from .store import Profile, RemoteStore
from .utils.pagination import table_pagination, table_search

logger = logging.getLogger("testcraft.auth")

MIN_PASSWORD_LENGTH = 6
PROFILE_COLUMNS = ("first_name", "last_name")
PROTECTED_PROFILE_KEYS = frozenset({"id", "email", "is_admin", "password", "password_hash", "token_version", "role"})
TEST_FIELDS = ("title", "description")
SORTABLE_TEST_COLUMNS = frozenset({"id", "title", "created_at"})


def _clean_email(email: str) -> str:
    email = (email or "").strip().lower()
    if "@" not in email or email.startswith("@") or email.endswith("@"):
        raise ValueError("invalid email address")
    return email


def _check_password(password: str) -> None:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"password must be at least {MIN_PASSWORD_LENGTH} characters")


def serialize_test(test) -> dict:
    return {
        "id": test.id,
        "owner_id": test.owner_id,
        "title": test.title,
        "description": test.description,
        "created_at": test.created_at.isoformat() if test.created_at else None,
    }


class AuthService:
    """Registration, login, logout, profile and password-reset flows."""
    def __init__(self, store: RemoteStore):
        self.store = store

    def _find_user(self, email: str):
        found = self.store.query_rows("users", {"email": email})
        return found[0] if found else None

    def register(self, email: str, password: str, first_name: str = "", last_name: str = ""):
        """Create a new user with a hashed password.

        Raises ValueError when the email is taken or the input is invalid.
        """
        email = _clean_email(email)
        _check_password(password)
        if self._find_user(email):
            raise ValueError("Email already registered")
        return self.store.insert_row("users", {
            "email": email,
            "password_hash": security.hash_password(password),
            "first_name": (first_name or "").strip(),
            "last_name": (last_name or "").strip(),
            "user_metadata": {},
        })

    def authenticate(self, email: str, password: str) -> Optional[str]:
        """Verify credentials and return a signed access token, or None."""
        try:
            email = _clean_email(email)
        except ValueError:
            return None
        user = self._find_user(email)
        if not user or not security.verify_password(password, user.password_hash):
            return None
        return security.create_access_token(user)

    def logout(self) -> None:
        """Revoke every token issued to the caller so far."""
        profile = self.store.get_current_user_profile()
        user = self._user_row(profile.id)
        self.store.update_row("users", user.id, {"token_version": user.token_version + 1})

    def update_profile(self, updates: dict) -> Profile:
        """Update name columns and merge everything else into metadata."""
        bad = PROTECTED_PROFILE_KEYS.intersection(updates)
        if bad:
            raise ValueError(f"cannot update field(s): {', '.join(sorted(bad))}")
        profile = self.store.get_current_user_profile()
        user = self._user_row(profile.id)
        fields = {k: (updates[k] or "").strip() for k in PROFILE_COLUMNS if k in updates}
        extra = {k: v for k, v in updates.items() if k not in PROFILE_COLUMNS}
        if extra:
            fields["user_metadata"] = {**(user.user_metadata or {}), **extra}
        if fields:
            user = self.store.update_row("users", user.id, fields)
        return Profile.from_user(user)

    def request_password_reset(self, email: str) -> Optional[str]:
        """Issue a reset token for `email`.

        Returns None for unknown addresses so callers can answer
        identically either way. Delivery is left to the mail relay
        reading the `password_reset_requested` log event.
        """
        try:
            email = _clean_email(email)
        except ValueError:
            return None
        user = self._find_user(email)
        if not user:
            return None
        token = security.create_reset_token(user)
        logger.info("password_reset_requested %s", json.dumps({"user_id": user.id, "token": token}))
        return token

    def confirm_password_reset(self, token: str, new_password: str) -> None:
        """Set a new password from a reset token and revoke old sessions."""
        _check_password(new_password)
        try:
            claims = security.decode_token(token, expected_type=security.RESET)
        except jwt.InvalidTokenError as exc:
            raise AuthResolutionFailure(f"invalid reset token: {exc}") from exc
        user = self._user_row(claims["user_id"])
        if user.token_version != claims.get("ver"):
            raise AuthResolutionFailure("reset token has already been used")
        self.store.update_row("users", user.id, {
            "password_hash": security.hash_password(new_password),
            "token_version": user.token_version + 1,
        })

    def _user_row(self, user_id: int):
        found = self.store.query_rows("users", {"id": user_id})
        if not found:
            raise AuthResolutionFailure("user not found")
        return found[0]


class TestService:
    """Create, list, update and delete the caller's tests."""
    __test__ = False

    def __init__(self, store: RemoteStore):
        self.store = store

    def create_test(self, title: str, description: Optional[str] = None):
        user_id = acting_user_id(self.store)
        title = (title or "").strip()
        if not title:
            raise ValueError("title must not be empty")
        return self.store.insert_row("tests", {
            "owner_id": user_id,
            "title": title,
            "description": (description or "").strip() or None,
        })

    def list_tests(self, page: int = 1, items_per_page: int = -1,
                   sort_by: Optional[Sequence[dict]] = None, search: Optional[str] = None) -> dict:
        """Return one page of the caller's tests, newest first by default."""
        user_id = acting_user_id(self.store)
        start, end, column, ascending = table_pagination(
            page, items_per_page, sort_by, default_column="created_at", is_ascending=False)
        if column not in SORTABLE_TEST_COLUMNS:
            raise ValueError(f"cannot sort by {column}")
        filters = {"owner_id": user_id}
        search = table_search(search).strip()
        if search:
            filters["title__ilike"] = f"%{search}%"
        total = len(self.store.query_rows("tests", filters))
        items = self.store.query_rows("tests", filters, order=(column, ascending), rows=(start, end))
        return {"items": [serialize_test(t) for t in items], "total": total}

    def get_test(self, test_id: int):
        return require_test_owner(self.store, test_id)

    def update_test(self, test_id: int, updates: dict):
        unknown = set(updates) - set(TEST_FIELDS)
        if unknown:
            raise ValueError(f"unknown field(s): {', '.join(sorted(unknown))}")
        require_test_owner(self.store, test_id)
        fields = {}
        if "title" in updates:
            title = (updates["title"] or "").strip()
            if not title:
                raise ValueError("title must not be empty")
            fields["title"] = title
        if "description" in updates:
            fields["description"] = (updates["description"] or "").strip() or None
        if not fields:
            return self.get_test(test_id)
        return self.store.update_row("tests", test_id, fields)

    def delete_test(self, test_id: int) -> None:
        """Delete a test together with its questions, choices and answers."""
        require_test_owner(self.store, test_id)
        for question in self.store.query_rows("questions", {"test_id": test_id}):
            _delete_question_rows(self.store, question.id)
        self.store.delete_row("tests", {"id": test_id})


def _delete_question_rows(store: RemoteStore, question_id: int) -> None:
    store.delete_row("answers", {"question_id": question_id})
    store.delete_row("answer_choices", {"question_id": question_id})
    store.delete_row("questions", {"id": question_id})


def _clean_choices(choices: Sequence) -> List[str]:
    texts = [(c if isinstance(c, str) else c.text).strip() for c in choices or []]
    if any(not t for t in texts):
        raise ValueError("answer choice text must not be empty")
    return texts


class QuestionService:
    """Questions, their answer choices and the marked correct answer."""
    def __init__(self, store: RemoteStore):
        self.store = store

    def create_question(self, test_id: int, text: str, choices: Sequence = (),
                        correct_index: Optional[int] = None):
        """Create a question with its choices.

        If inserting a choice fails, the question and any choices already
        inserted are removed before the error is re-raised.
        """
        text = (text or "").strip()
        if not text:
            raise ValueError("question text must not be empty")
        texts = _clean_choices(choices)
        if correct_index is not None and not 0 <= correct_index < len(texts):
            raise ValueError("correct_index is out of range")
        require_test_owner(self.store, test_id)

        question = self.store.insert_row("questions", {"test_id": test_id, "text": text})
        try:
            rows = [self.store.insert_row("answer_choices", {"question_id": question.id, "text": t})
                    for t in texts]
            if correct_index is not None:
                self.store.insert_row("answers", {"question_id": question.id,
                                                  "choice_id": rows[correct_index].id})
        except TestcraftError:
            _delete_question_rows(self.store, question.id)
            raise
        return question

    def list_questions(self, test_id: int) -> List[dict]:
        """Return the test's questions with choices and correct choice id."""
        require_test_owner(self.store, test_id)
        questions = self.store.query_rows("questions", {"test_id": test_id}, order=("id", True))
        ids = [q.id for q in questions]
        choices, answers = [], []
        if ids:
            choices = self.store.query_rows("answer_choices", {"question_id__in": ids}, order=("id", True))
            answers = self.store.query_rows("answers", {"question_id__in": ids})
        correct = {a.question_id: a.choice_id for a in answers}
        out = []
        for q in questions:
            out.append({
                "id": q.id,
                "test_id": q.test_id,
                "text": q.text,
                "answer_choices": [{"id": c.id, "text": c.text} for c in choices if c.question_id == q.id],
                "correct_choice_id": correct.get(q.id),
            })
        return out

    def update_question(self, question_id: int, text: str, choices: Sequence) -> ReconcileResult:
        """Update the question text, then reconcile its answer choices.

        The text is committed first, so a failed reconciliation still
        reports `question_text_updated`.
        """
        text = (text or "").strip()
        if not text:
            raise ValueError("question text must not be empty")
        texts = _clean_choices(choices)
        require_question_owner(self.store, question_id)
        self.store.update_row("questions", question_id, {"text": text})
        existing = self.store.query_rows("answer_choices", {"question_id": question_id}, order=("id", True))
        result = reconcile_answer_choices(self.store, question_id, existing, texts)
        result.question_text_updated = True
        return result

    def delete_question(self, question_id: int) -> None:
        require_question_owner(self.store, question_id)
        _delete_question_rows(self.store, question_id)

    def set_correct_answer(self, question_id: int, choice_id: int):
        """Mark `choice_id` as the question's correct answer."""
        require_question_owner(self.store, question_id)
        if not self.store.query_rows("answer_choices", {"id": choice_id, "question_id": question_id}):
            raise NotFound(f"choice {choice_id} not found for question {question_id}")
        existing = self.store.query_rows("answers", {"question_id": question_id})
        if existing:
            return self.store.update_row("answers", existing[0].id, {"choice_id": choice_id})
        return self.store.insert_row("answers", {"question_id": question_id, "choice_id": choice_id})

    def clear_correct_answer(self, question_id: int) -> None:
        require_question_owner(self.store, question_id)
        self.store.delete_row("answers", {"question_id": question_id})
