"""Authentication helpers and FastAPI security dependencies.

The bearer token is read from the `Authorization` header, falling back
to the auth cookie set at login so plain browser navigation carries the
session too. Each request gets its own `SQLStore` bound to that token.
"""

from typing import Optional

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from .config import settings
from .database import get_session
from .errors import AuthResolutionFailure
from .store import Profile, SQLStore

bearer_scheme = HTTPBearer(auto_error=False)


def extract_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials] = None) -> Optional[str]:
    """Return the caller's token from the header or cookie, if any."""
    if credentials is not None and credentials.credentials:
        return credentials.credentials
    auth = request.headers.get("Authorization", "")
    if auth.lower().startswith("bearer "):
        return auth[7:].strip() or None
    return request.cookies.get(settings.AUTH_COOKIE_NAME)


def get_store(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    db: Session = Depends(get_session),
) -> SQLStore:
    """FastAPI dependency returning the per-request store."""
    return SQLStore(db, extract_token(request, credentials))


def get_current_user(store: SQLStore = Depends(get_store)) -> Profile:
    """FastAPI dependency that returns the authenticated user's profile.

    Raises HTTPException(401) when there is no valid session.
    """
    try:
        return store.get_current_user_profile()
    except AuthResolutionFailure as exc:
        raise HTTPException(status_code=401, detail=exc.message)
