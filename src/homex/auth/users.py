# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Optional

import yaml
from sqlalchemy.orm import Session

from homex.auth.passwords import hash_password, verify_password
from homex.auth.session import Role
from homex.infra.models import User
from homex.infra.user_repo import UserRepository

logger = logging.getLogger(__name__)

DEFAULT_SEED_PATH = os.getenv("HOMEX_USERS_SEED", "")


def authenticate(db: Session, email: str, password: str) -> Optional[User]:
    """Return the user if the credential account matches, else None.

    Callers must not tell apart "no such user" from "wrong password".
    """
    repo = UserRepository(db)
    u = repo.get_user_by_email(email)
    if not u:
        logger.info("Sign-in rejected: unknown email")
        return None
    account = repo.find_credential_record(u.id)
    if not account or not account.password:
        logger.warning("Sign-in rejected: user %s has no credential account", u.id)
        return None
    if not verify_password(account.password, password):
        logger.info("Sign-in rejected: bad password for user %s", u.id)
        return None
    return u


def seed_users_from_yaml(db: Session, path: Path) -> List[str]:
    """Create users listed in a YAML seed file that don't exist yet.

    Expected layout::

        users:
          admin@example.com:
            name: Admin User
            role: ADMIN
            password: ChangeMe1
            must_change_password: true

    ``password_hash`` may be given instead of ``password``.
    """
    if not path.exists():
        logger.warning("User seed file %s not found", path)
        return []
    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    users = (raw.get("users") or {}) if isinstance(raw, dict) else {}

    repo = UserRepository(db)
    created: List[str] = []
    with repo.transaction():
        for email, udata in users.items():
            if not isinstance(udata, dict):
                continue
            e = str(email).strip().lower()
            if not e or repo.get_user_by_email(e):
                continue
            ph = str(udata.get("password_hash") or "").strip()
            if not ph:
                plain = str(udata.get("password") or "")
                if not plain:
                    logger.warning("Seed user %s has no password, skipped", e)
                    continue
                ph = hash_password(plain)
            repo.create_user(
                email=e,
                name=str(udata.get("name") or ""),
                role=Role.parse(udata.get("role")).value,
                password_hash=ph,
                must_change_password=bool(udata.get("must_change_password", True)),
                image=udata.get("image"),
            )
            created.append(e)
    if created:
        logger.info("Seeded %d user(s) from %s", len(created), path)
    return created
