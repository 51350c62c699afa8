"""Ownership checks run before every mutation.

The store grants broad row access, so each write path first proves the
acting user owns the test at the root of what is being changed.
"""

from .errors import AccessDenied, AuthResolutionFailure, NotFound
from .store import RemoteStore


def acting_user_id(store: RemoteStore) -> int:
    """Return the caller's user id or raise `AuthResolutionFailure`."""
    session = store.get_current_session()
    if session is None:
        raise AuthResolutionFailure("User not authenticated")
    return session.user_id


def require_test_owner(store: RemoteStore, test_id: int):
    """Return the test row if the caller owns it.

    Raises `NotFound` when the test does not exist and `AccessDenied`
    when it belongs to someone else.
    """
    user_id = acting_user_id(store)
    test = store.query_owned_row("tests", {"id": test_id, "owner_id": user_id})
    if test is not None:
        return test
    if store.query_rows("tests", {"id": test_id}):
        raise AccessDenied("Test not found or access denied")
    raise NotFound(f"test {test_id} not found")


def require_question_owner(store: RemoteStore, question_id: int):
    """Return the question row if the caller owns its test."""
    acting_user_id(store)
    questions = store.query_rows("questions", {"id": question_id})
    if not questions:
        raise NotFound(f"question {question_id} not found")
    question = questions[0]
    require_test_owner(store, question.test_id)
    return question
