# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

import logging
import os
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from itsdangerous import BadSignature, BadTimeSignature, URLSafeTimedSerializer
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from homex.infra.models import AuthSession, User

logger = logging.getLogger(__name__)

COOKIE_NAME = os.getenv("HOMEX_COOKIE_NAME", "homex.session_token")
DEFAULT_MAX_AGE_SECONDS = int(os.getenv("HOMEX_SESSION_MAX_AGE", str(7 * 24 * 3600)))  # 7 days
MIN_SECRET_LENGTH = 32


class Role(str, Enum):
    ADMIN = "ADMIN"
    OPERATOR = "OPERATOR"
    CLIENT = "CLIENT"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Role":
        try:
            return cls(str(value or "").strip().upper())
        except ValueError:
            return cls.CLIENT


@dataclass(frozen=True)
class SessionData:
    user_id: str
    role: Role
    must_change_password: bool
    name: str
    email: str = ""
    image: Optional[str] = None


def _serializer() -> URLSafeTimedSerializer:
    secret = os.getenv("HOMEX_SECRET_KEY") or os.getenv("SECRET_KEY")
    if not secret:
        raise RuntimeError("Missing HOMEX_SECRET_KEY (or SECRET_KEY) in environment")
    if len(secret) < MIN_SECRET_LENGTH:
        raise RuntimeError(f"HOMEX_SECRET_KEY must be at least {MIN_SECRET_LENGTH} characters")
    salt = os.getenv("HOMEX_SESSION_SALT", "homex.session.v1")
    return URLSafeTimedSerializer(secret_key=secret, salt=salt)


def _utcnow() -> datetime:
    # stored naive, always UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


def sign_token(token: str) -> str:
    return _serializer().dumps({"t": token})


def unsign_token(cookie_value: str, *, max_age: int = DEFAULT_MAX_AGE_SECONDS) -> Optional[str]:
    if not cookie_value:
        return None
    try:
        data = _serializer().loads(cookie_value, max_age=max_age)
    except (BadSignature, BadTimeSignature):
        return None
    t = str((data or {}).get("t") or "").strip() if isinstance(data, dict) else ""
    return t or None


def session_from_user(user: User) -> SessionData:
    return SessionData(
        user_id=user.id,
        role=Role.parse(user.role),
        must_change_password=bool(user.must_change_password),
        name=user.name or "",
        email=user.email or "",
        image=user.image,
    )


class SessionStore:
    """Server-side sessions keyed by an opaque token.

    The browser only ever holds the signed token; role and the forced
    password change flag are read from the user row on every lookup.
    """

    def __init__(self, db: Session, *, max_age: int = DEFAULT_MAX_AGE_SECONDS):
        self.db = db
        self.max_age = max_age

    def create_session(
        self,
        user_id: str,
        *,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> str:
        """Persist a new session and return the signed cookie value."""
        token = secrets.token_urlsafe(32)
        self.db.add(
            AuthSession(
                token=token,
                user_id=user_id,
                expires_at=_utcnow() + timedelta(seconds=self.max_age),
                ip_address=ip_address,
                user_agent=user_agent,
            )
        )
        self.db.commit()
        return sign_token(token)

    def get_session(self, cookie_value: str) -> Optional[SessionData]:
        token = unsign_token(cookie_value, max_age=self.max_age)
        if not token:
            return None
        row = self.db.scalars(select(AuthSession).where(AuthSession.token == token)).first()
        if row is None:
            return None
        if row.expires_at <= _utcnow():
            logger.debug("Session %s expired at %s, removing it", row.id, row.expires_at)
            self.db.delete(row)
            self.db.commit()
            return None
        user = self.db.get(User, row.user_id)
        if user is None:
            return None
        return session_from_user(user)

    def revoke_session(self, cookie_value: str) -> None:
        token = unsign_token(cookie_value, max_age=self.max_age)
        if not token:
            return
        self.db.execute(delete(AuthSession).where(AuthSession.token == token))
        self.db.commit()
