"""Password hashing and JWT helpers.

Access tokens carry the session claims (`user_id`, `email`, `is_admin`,
`metadata`) plus `ver`, the user's token version at issue time. Reset
tokens are short-lived and typed so they cannot be used as a session.
"""

from datetime import datetime, timedelta, timezone

import jwt
from passlib.context import CryptContext

from .config import settings

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

ACCESS = "access"
RESET = "reset"


def hash_password(password: str) -> str:
    return PWD_CTX.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return PWD_CTX.verify(password, password_hash)


def _encode(claims: dict, lifetime: timedelta) -> str:
    expire = datetime.now(timezone.utc) + lifetime
    payload = {**claims, "exp": int(expire.timestamp())}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def create_access_token(user) -> str:
    """Sign a session token for `user`."""
    claims = {
        "typ": ACCESS,
        "user_id": user.id,
        "email": user.email,
        "is_admin": bool(user.is_admin),
        "metadata": dict(user.user_metadata or {}),
        "ver": user.token_version,
    }
    return _encode(claims, timedelta(hours=settings.JWT_EXPIRE_HOURS))


def create_reset_token(user) -> str:
    """Sign a password-reset token for `user`."""
    claims = {"typ": RESET, "user_id": user.id, "ver": user.token_version}
    return _encode(claims, timedelta(minutes=settings.RESET_TOKEN_MINUTES))


def decode_token(token: str, expected_type: str = ACCESS) -> dict:
    """Decode and verify a token.

    Raises `jwt.ExpiredSignatureError` for expired tokens and
    `jwt.InvalidTokenError` for anything else that does not verify,
    including a token of the wrong type.
    """
    payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    if payload.get("typ") != expected_type:
        raise jwt.InvalidTokenError("unexpected token type")
    if "user_id" not in payload:
        raise jwt.InvalidTokenError("invalid token payload")
    return payload
