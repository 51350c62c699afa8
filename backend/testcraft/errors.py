"""Error taxonomy shared by the store, guard, reconciler and services.

Every error carries the HTTP status the API renders it with, so the
FastAPI exception handler in `main` stays a one-liner.
"""


class TestcraftError(Exception):
    """Base class for expected, non-fatal application failures."""
    __test__ = False
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthResolutionFailure(TestcraftError):
    """Session or profile could not be resolved; treated as unauthenticated."""
    status_code = 401


class AccessDenied(TestcraftError):
    """The acting user does not own the ancestor test."""
    status_code = 403


class NotFound(TestcraftError):
    """A referenced test, question or choice does not exist."""
    status_code = 404


class RemoteOperationFailure(TestcraftError):
    """A store call failed; `message` is the backend's text verbatim."""
    status_code = 502
