# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from homex.infra.models import CREDENTIAL_PROVIDER, Account, User

logger = logging.getLogger(__name__)


class UserRepository:
    """User / account persistence used by the auth flows.

    Updates are issued as UPDATE statements inside the session's current
    transaction; nothing is committed until ``transaction()`` exits cleanly.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_user(self, user_id: str) -> Optional[User]:
        return self.db.get(User, user_id)

    def get_user_by_email(self, email: str) -> Optional[User]:
        e = (email or "").strip().lower()
        if not e:
            return None
        return self.db.scalars(select(User).where(User.email == e)).first()

    def find_credential_record(self, user_id: str, provider_id: str = CREDENTIAL_PROVIDER) -> Optional[Account]:
        stmt = select(Account).where(Account.user_id == user_id, Account.provider_id == provider_id)
        return self.db.scalars(stmt).first()

    def update_user_record(self, user_id: str, **fields) -> None:
        if not fields:
            return
        res = self.db.execute(update(User).where(User.id == user_id).values(**fields))
        if res.rowcount != 1:
            raise LookupError(f"User '{user_id}' not found")

    def update_credential_record(self, account_id: str, **fields) -> None:
        if not fields:
            return
        res = self.db.execute(update(Account).where(Account.id == account_id).values(**fields))
        if res.rowcount != 1:
            raise LookupError(f"Account '{account_id}' not found")

    def create_user(
        self,
        *,
        email: str,
        name: str,
        role: str,
        password_hash: str,
        must_change_password: bool = True,
        image: Optional[str] = None,
    ) -> User:
        """Insert a user together with its credential account (not committed)."""
        e = (email or "").strip().lower()
        user = User(
            email=e,
            name=name or "",
            image=image,
            role=role,
            must_change_password=must_change_password,
            password=password_hash,
        )
        self.db.add(user)
        self.db.flush()
        self.db.add(
            Account(
                user_id=user.id,
                provider_id=CREDENTIAL_PROVIDER,
                account_id=user.id,
                password=password_hash,
            )
        )
        self.db.flush()
        return user

    @contextmanager
    def transaction(self) -> Iterator["UserRepository"]:
        """Commit everything done inside the block at once, or roll it all back."""
        try:
            yield self
            self.db.commit()
        except Exception:
            logger.warning("Rolling back user transaction")
            self.db.rollback()
            raise
