"""Remote data-and-auth store.

The guard, the reconciler and the services only use the small operation
set declared on `RemoteStore`. `SQLStore` implements it on top of a
SQLModel session and the caller's bearer token, so one instance is the
explicit per-request context: it knows who is calling and where the rows
live, and nothing about either is kept at module level.

Store calls raise instead of returning error values:

- `RemoteOperationFailure` for any database failure (message verbatim)
- `NotFound` when `update_row` targets a missing row
- `AuthResolutionFailure` when the profile cannot be resolved
"""

import abc
import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import jwt
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from . import models, security
from .errors import AuthResolutionFailure, NotFound, RemoteOperationFailure

logger = logging.getLogger("testcraft.store")

Filters = Dict[str, Any]
Order = Tuple[str, bool]


@dataclass(frozen=True)
class SessionInfo:
    """The caller's authenticated session as presented in the token."""
    user_id: int
    email: str
    metadata: dict = field(default_factory=dict)
    is_admin: bool = False
    token_version: int = 0


@dataclass(frozen=True)
class Profile:
    """Full user profile, fetched from the users table."""
    id: int
    email: str
    attributes: dict = field(default_factory=dict)
    is_admin: bool = False

    @property
    def role(self) -> Optional[str]:
        if self.is_admin:
            return "Super Administrator"
        return self.attributes.get("user_role")

    @classmethod
    def from_user(cls, user: models.User) -> "Profile":
        attrs = dict(user.user_metadata or {})
        attrs["first_name"] = user.first_name
        attrs["last_name"] = user.last_name
        attrs["full_name"] = f"{user.first_name} {user.last_name}".strip()
        return cls(id=user.id, email=user.email, attributes=attrs, is_admin=bool(user.is_admin))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            **self.attributes,
            "is_admin": self.is_admin,
            "role": self.role,
        }


class RemoteStore(abc.ABC):
    """Operation set the application needs from its backend."""

    @abc.abstractmethod
    def get_current_session(self) -> Optional[SessionInfo]:
        """Return the caller's session, or None when not logged in."""

    @abc.abstractmethod
    def get_current_user_profile(self) -> Profile:
        """Return the caller's full profile or raise `AuthResolutionFailure`."""

    @abc.abstractmethod
    def query_owned_row(self, table: str, filters: Filters):
        """Return the first row matching `filters` (owner included) or None."""

    @abc.abstractmethod
    def insert_row(self, table: str, fields: dict):
        """Insert a row and return it with its assigned id."""

    @abc.abstractmethod
    def update_row(self, table: str, row_id: int, fields: dict):
        """Update row `row_id` and return it."""

    @abc.abstractmethod
    def delete_row(self, table: str, filters: Filters) -> None:
        """Delete every row matching `filters`."""

    @abc.abstractmethod
    def query_rows(self, table: str, filters: Optional[Filters] = None,
                   order: Optional[Order] = None, rows: Optional[Tuple[int, int]] = None) -> list:
        """Return rows matching `filters`, optionally ordered and ranged."""


class SQLStore(RemoteStore):
    """`RemoteStore` backed by a SQLModel session.

    Filter keys are column names compared for equality; a `__in` suffix
    matches any value of a list and `__ilike` does a case-insensitive
    pattern match. `rows` is an inclusive `(start, end)` index range.
    """

    def __init__(self, db: Session, token: Optional[str] = None):
        self.db = db
        self.token = token

    # -- auth ---------------------------------------------------------

    def get_current_session(self) -> Optional[SessionInfo]:
        if not self.token:
            return None
        try:
            claims = security.decode_token(self.token)
        except jwt.ExpiredSignatureError:
            logger.info("session_expired")
            return None
        except jwt.InvalidTokenError:
            return None
        return SessionInfo(
            user_id=claims["user_id"],
            email=claims.get("email", ""),
            metadata=claims.get("metadata") or {},
            is_admin=bool(claims.get("is_admin", False)),
            token_version=int(claims.get("ver", 0)),
        )

    def get_current_user_profile(self) -> Profile:
        session = self.get_current_session()
        if session is None:
            raise AuthResolutionFailure("User not authenticated")
        try:
            user = self.db.get(models.User, session.user_id)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise AuthResolutionFailure(f"profile lookup failed: {exc}") from exc
        if user is None:
            raise AuthResolutionFailure("user not found")
        if user.token_version != session.token_version:
            raise AuthResolutionFailure("session has been revoked")
        return Profile.from_user(user)

    # -- rows ---------------------------------------------------------

    def query_owned_row(self, table: str, filters: Filters):
        found = self.query_rows(table, filters, rows=(0, 0))
        return found[0] if found else None

    def insert_row(self, table: str, fields: dict):
        model = self._model(table)
        self._check_columns(table, model, fields)
        with self._remote("insert", table):
            row = model(**fields)
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
        return row

    def update_row(self, table: str, row_id: int, fields: dict):
        model = self._model(table)
        self._check_columns(table, model, fields)
        with self._remote("update", table):
            row = self.db.get(model, row_id)
            if row is None:
                raise NotFound(f"{table} row {row_id} not found")
            for name, value in fields.items():
                setattr(row, name, value)
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
        return row

    def delete_row(self, table: str, filters: Filters) -> None:
        if not filters:
            raise RemoteOperationFailure("DELETE requires a WHERE clause")
        model = self._model(table)
        clauses = self._where(table, model, filters)
        with self._remote("delete", table):
            for row in self.db.exec(select(model).where(*clauses)).all():
                self.db.delete(row)
            self.db.commit()

    def query_rows(self, table: str, filters: Optional[Filters] = None,
                   order: Optional[Order] = None, rows: Optional[Tuple[int, int]] = None) -> list:
        model = self._model(table)
        stmt = select(model).where(*self._where(table, model, filters or {}))
        if order:
            column, ascending = order
            self._check_columns(table, model, {column: None})
            attr = getattr(model, column)
            stmt = stmt.order_by(attr.asc() if ascending else attr.desc())
        if rows is not None:
            start, end = rows
            stmt = stmt.offset(start).limit(max(0, end - start + 1))
        with self._remote("select", table):
            return list(self.db.exec(stmt).all())

    # -- helpers ------------------------------------------------------

    @staticmethod
    def _model(table: str):
        try:
            return models.TABLES[table]
        except KeyError:
            raise RemoteOperationFailure(f'relation "{table}" does not exist')

    @staticmethod
    def _check_columns(table: str, model, fields: dict):
        for name in fields:
            if name not in model.__table__.c:
                raise RemoteOperationFailure(f'column "{name}" of relation "{table}" does not exist')

    def _where(self, table: str, model, filters: Filters) -> list:
        clauses = []
        for key, value in filters.items():
            name, _, op = key.partition("__")
            self._check_columns(table, model, {name: None})
            column = getattr(model, name)
            if op == "":
                clauses.append(column == value)
            elif op == "in":
                clauses.append(column.in_(list(value)))
            elif op == "ilike":
                clauses.append(column.ilike(value))
            else:
                raise RemoteOperationFailure(f"unsupported filter operator: {op}")
        return clauses

    @contextmanager
    def _remote(self, action: str, table: str):
        try:
            yield
        except SQLAlchemyError as exc:
            self.db.rollback()
            message = str(getattr(exc, "orig", None) or exc)
            logger.warning(
                "store_failure %s",
                json.dumps({"action": action, "table": table, "error": message}, ensure_ascii=True),
            )
            raise RemoteOperationFailure(message) from exc
