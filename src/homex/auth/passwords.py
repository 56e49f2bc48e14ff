# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

from argon2 import PasswordHasher
from argon2.exceptions import HashingError, InvalidHashError, VerificationError, VerifyMismatchError

_PH = PasswordHasher()


class HashingUnavailable(RuntimeError):
    """The password hashing provider could not complete the operation."""


def hash_password(plain: str) -> str:
    if not plain:
        raise ValueError("Empty password")
    try:
        return _PH.hash(plain)
    except HashingError as exc:
        raise HashingUnavailable("argon2 could not hash the password") from exc


def verify_password(hash_value: str, plain: str) -> bool:
    if not hash_value or not plain:
        return False
    try:
        return _PH.verify(hash_value, plain)
    except VerifyMismatchError:
        return False
    except (InvalidHashError, VerificationError) as exc:
        raise HashingUnavailable("argon2 could not verify the stored hash") from exc


class CredentialVerifier:
    """Thin object wrapper so the hashing provider can be swapped in tests."""

    def verify(self, stored_hash: str, candidate: str) -> bool:
        return verify_password(stored_hash, candidate)

    def hash(self, plain: str) -> str:
        return hash_password(plain)
