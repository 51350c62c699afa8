"""Navigation guard for page routes.

`evaluate_navigation` decides, for one requested path, whether the caller
may see the page or must be sent elsewhere. The rules run in a fixed
order and the first one that applies decides:

1. resolve the session (a failing store counts as logged out)
2. public routes are allowed, except that logged-in users hitting
   home/login/register go to the dashboard once their profile resolves
3. logged-out callers on an auth route go to login
4. logged-in callers get their profile fetched; failure goes to login
5. non-admins on an admin route go to forbidden
6. unknown paths go to not-found
7. everything else is allowed

A session whose profile cannot be resolved is stale (revoked, or its user
is gone). Decisions reached that way carry `invalidate_session` so the
caller can drop the credential it presented.
"""

import itertools
import json
import logging
import threading
from dataclasses import dataclass
from typing import Optional, Sequence

from starlette.routing import compile_path

from .errors import TestcraftError
from .store import Profile, RemoteStore

logger = logging.getLogger("testcraft.guard")

ALLOW = "allow"
REDIRECT = "redirect"
DISCARD = "discard"

LANDING_ROUTE = "dashboard"
AUTH_FORM_ROUTES = frozenset({"home", "login", "register"})
PUBLIC_ROUTES = frozenset({"home", "login", "register", "forbidden", "not-found"})


@dataclass(frozen=True)
class RouteDescriptor:
    path: str
    name: str
    requires_auth: bool = False
    requires_admin: bool = False
    public: bool = False

    def __post_init__(self):
        if self.requires_admin and not self.requires_auth:
            raise ValueError(f"route {self.name!r} requires admin but not auth")
        regex, _, _ = compile_path(self.path)
        object.__setattr__(self, "_regex", regex)

    @property
    def is_public(self) -> bool:
        return self.public or self.name in PUBLIC_ROUTES

    def matches(self, path: str) -> bool:
        return self._regex.match(path) is not None


ROUTES = (
    RouteDescriptor("/", "home"),
    RouteDescriptor("/login", "login"),
    RouteDescriptor("/register", "register"),
    RouteDescriptor("/dashboard", "dashboard", requires_auth=True),
    RouteDescriptor("/dashboard/test/{test_id:int}/questions", "question-management", requires_auth=True),
    RouteDescriptor("/dashboard/test/{test_id:int}/edit", "edit-test", requires_auth=True),
    RouteDescriptor("/admin", "admin", requires_auth=True, requires_admin=True),
    RouteDescriptor("/forbidden", "forbidden"),
    RouteDescriptor("/not-found", "not-found"),
)

ROUTE_PATHS = {r.name: r.path for r in ROUTES}


@dataclass(frozen=True)
class Decision:
    kind: str
    redirect_to: Optional[str] = None
    profile: Optional[Profile] = None
    invalidate_session: bool = False

    @classmethod
    def allow(cls, profile: Optional[Profile] = None, invalidate_session: bool = False) -> "Decision":
        return cls(ALLOW, profile=profile, invalidate_session=invalidate_session)

    @classmethod
    def redirect(cls, route_name: str, invalidate_session: bool = False) -> "Decision":
        return cls(REDIRECT, redirect_to=route_name, invalidate_session=invalidate_session)

    @property
    def allowed(self) -> bool:
        return self.kind == ALLOW


class NavigationSequence:
    """Issues tickets so only the latest navigation's decision is applied."""

    def __init__(self):
        self._counter = itertools.count(1)
        self._current = 0
        self._lock = threading.Lock()

    def begin(self) -> int:
        with self._lock:
            self._current = next(self._counter)
            return self._current

    def is_current(self, ticket: int) -> bool:
        with self._lock:
            return ticket == self._current


def match_route(path: str, routes: Sequence[RouteDescriptor] = ROUTES) -> Optional[RouteDescriptor]:
    for route in routes:
        if route.matches(path):
            return route
    return None


def _log(event: str, **fields) -> None:
    logger.warning("%s %s", event, json.dumps(fields, ensure_ascii=True))


def _resolve_profile(store: RemoteStore, target: str, session) -> Optional[Profile]:
    try:
        return store.get_current_user_profile()
    except TestcraftError as exc:
        _log("profile_resolution_failed", path=target, user_id=session.user_id, error=exc.message)
        return None


def _decide(target: str, store: RemoteStore, routes: Sequence[RouteDescriptor]) -> Decision:
    try:
        session = store.get_current_session()
    except TestcraftError as exc:
        _log("session_resolution_failed", path=target, error=exc.message)
        session = None

    route = match_route(target, routes)

    if route is not None and route.is_public:
        if session is not None and route.name in AUTH_FORM_ROUTES:
            if _resolve_profile(store, target, session) is None:
                return Decision.allow(invalidate_session=True)
            return Decision.redirect(LANDING_ROUTE)
        return Decision.allow()

    if session is None and route is not None and route.requires_auth:
        return Decision.redirect("login")

    profile = None
    if session is not None:
        profile = _resolve_profile(store, target, session)
        if profile is None:
            return Decision.redirect("login", invalidate_session=True)
        if route is not None and route.requires_admin and not profile.is_admin:
            return Decision.redirect("forbidden")

    if route is None:
        return Decision.redirect("not-found")

    return Decision.allow(profile)


def evaluate_navigation(target: str, store: RemoteStore,
                        routes: Sequence[RouteDescriptor] = ROUTES,
                        sequence: Optional[NavigationSequence] = None) -> Decision:
    """Decide whether the caller may navigate to `target`.

    Store failures never escape: they degrade to a redirect. When a
    `sequence` is given and another navigation began while this one was
    resolving, the decision comes back as `discard`.
    """
    ticket = sequence.begin() if sequence is not None else None
    decision = _decide(target, store, routes)
    if sequence is not None and not sequence.is_current(ticket):
        return Decision(DISCARD)
    return decision
