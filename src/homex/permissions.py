# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from typing import AbstractSet, Optional, Union
from urllib.parse import urlencode

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from homex.auth.session import COOKIE_NAME, Role, SessionData, SessionStore
from homex.errors import ForbiddenError, UnauthorizedError
from homex.infra.db import get_db

logger = logging.getLogger(__name__)

SIGNIN_PATH = "/signin"
CHANGE_PASSWORD_PATH = "/change-password"
DEFAULT_HOME = "/"

ROLE_HOME = {
    Role.ADMIN: "/admin",
    Role.OPERATOR: "/operator",
}

ADMIN_ONLY = frozenset({Role.ADMIN})
OPERATOR_ONLY = frozenset({Role.OPERATOR})
ADMIN_OR_OPERATOR = frozenset({Role.ADMIN, Role.OPERATOR})


def home_for(role: Optional[Role]) -> str:
    return ROLE_HOME.get(role, DEFAULT_HOME)


def landing_for(session: SessionData) -> str:
    """Where a signed-in user goes next: the forced change first, else their home."""
    if session.must_change_password:
        return CHANGE_PASSWORD_PATH
    return home_for(session.role)


# ------------------ Session resolution ------------------


class SessionResolver:
    """Resolves the session for one request, at most once.

    Lives on ``request.state``, so it dies with the request. The lock keeps
    sync dependencies running in parallel threads from doing two lookups.
    """

    def __init__(self, store: SessionStore, cookie_value: str):
        self._store = store
        self._cookie_value = cookie_value or ""
        self._lock = threading.Lock()
        self._resolved = False
        self._session: Optional[SessionData] = None

    def resolve(self) -> Optional[SessionData]:
        with self._lock:
            if not self._resolved:
                self._session = self._store.get_session(self._cookie_value) if self._cookie_value else None
                self._resolved = True
            return self._session

    def invalidate(self) -> None:
        """Drop the memoized value; only used after the user row changed."""
        with self._lock:
            self._resolved = False
            self._session = None


def get_session_resolver(request: Request, db: Session = Depends(get_db)) -> SessionResolver:
    resolver = getattr(request.state, "session_resolver", None)
    if resolver is None:
        resolver = SessionResolver(SessionStore(db), request.cookies.get(COOKIE_NAME, ""))
        request.state.session_resolver = resolver
    return resolver


def current_session_optional(resolver: SessionResolver = Depends(get_session_resolver)) -> Optional[SessionData]:
    return resolver.resolve()


# ------------------ Authorization gate ------------------


@dataclass(frozen=True)
class Allowed:
    session: SessionData


@dataclass(frozen=True)
class Unauthenticated:
    pass


@dataclass(frozen=True)
class Forbidden:
    reason: str
    session: SessionData


GateOutcome = Union[Allowed, Unauthenticated, Forbidden]


def authorize(session: Optional[SessionData], allowed_roles: Optional[AbstractSet[Role]] = None) -> GateOutcome:
    """Decide access for ``session``.

    ``allowed_roles=None`` admits any signed-in user; an empty set admits nobody.
    """
    if session is None:
        return Unauthenticated()
    if allowed_roles is not None and session.role not in allowed_roles:
        wanted = " or ".join(sorted(r.value.capitalize() for r in allowed_roles))
        reason = f"{wanted} access required" if wanted else "No role has access"
        return Forbidden(reason=reason, session=session)
    return Allowed(session=session)


def require_admin(session: Optional[SessionData]) -> GateOutcome:
    return authorize(session, ADMIN_ONLY)


def require_operator(session: Optional[SessionData]) -> GateOutcome:
    return authorize(session, OPERATOR_ONLY)


def require_admin_or_operator(session: Optional[SessionData]) -> GateOutcome:
    return authorize(session, ADMIN_OR_OPERATOR)


# ------------------ FastAPI boundary ------------------


def redirect_to(url: str) -> HTTPException:
    return HTTPException(status_code=303, headers={"Location": url})


def signin_url(callback_path: str = "") -> str:
    if not callback_path or callback_path == SIGNIN_PATH:
        return SIGNIN_PATH
    return f"{SIGNIN_PATH}?{urlencode({'callbackUrl': callback_path})}"


def _request_path(request: Request) -> str:
    # set by the edge filter; falls back for routes it does not cover
    return getattr(request.state, "pathname", None) or request.url.path


def require_page(allowed_roles: Optional[AbstractSet[Role]] = None, *, forbidden_redirect: Optional[str] = None):
    """Dependency for server-rendered pages: redirects instead of erroring.

    Signed-out users go to sign-in (with ``callbackUrl``), users with the
    wrong role go to ``forbidden_redirect`` or their own home, and users
    who still have to change their password go to the change-password page.
    """

    def _dep(request: Request, resolver: SessionResolver = Depends(get_session_resolver)) -> SessionData:
        outcome = authorize(resolver.resolve(), allowed_roles)
        if isinstance(outcome, Unauthenticated):
            raise redirect_to(signin_url(_request_path(request)))
        if isinstance(outcome, Forbidden):
            logger.info("User %s denied on %s: %s", outcome.session.user_id, _request_path(request), outcome.reason)
            raise redirect_to(forbidden_redirect or home_for(outcome.session.role))
        if outcome.session.must_change_password:
            raise redirect_to(CHANGE_PASSWORD_PATH)
        return outcome.session

    return _dep


def require_api(allowed_roles: Optional[AbstractSet[Role]] = None):
    """Dependency for JSON endpoints: 401 / 403 through the AppError handlers."""

    def _dep(resolver: SessionResolver = Depends(get_session_resolver)) -> SessionData:
        outcome = authorize(resolver.resolve(), allowed_roles)
        if isinstance(outcome, Unauthenticated):
            raise UnauthorizedError()
        if isinstance(outcome, Forbidden):
            raise ForbiddenError(f"Forbidden - {outcome.reason}")
        return outcome.session

    return _dep


def cookie_settings() -> dict:
    secure = os.getenv("HOMEX_COOKIE_SECURE", "false").lower() in {"1", "true", "yes", "y"}
    return {"httponly": True, "samesite": "lax", "secure": secure}
