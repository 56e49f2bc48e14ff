# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List

MIN_LENGTH = 8

CURRENT_FIELD = "current_password"
NEW_FIELD = "new_password"
CONFIRM_FIELD = "confirm_password"

# (pattern, message) pairs, each checked independently against the new password
_CHARACTER_RULES = [
    (re.compile(r"[A-Z]"), "Password must contain at least one uppercase letter"),
    (re.compile(r"[a-z]"), "Password must contain at least one lowercase letter"),
    (re.compile(r"[0-9]"), "Password must contain at least one number"),
]


@dataclass
class ValidationResult:
    errors: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

    def add(self, field_name: str, message: str) -> None:
        self.errors.setdefault(field_name, []).append(message)


class PasswordPolicy:
    """Strength and confirmation rules for a password change.

    Every rule is evaluated so the form can show all problems at once.
    Whether ``current_password`` is actually correct is not checked here.
    """

    def __init__(self, min_length: int = MIN_LENGTH):
        self.min_length = min_length

    def validate(self, current_password: str, new_password: str, confirm_password: str) -> ValidationResult:
        result = ValidationResult()
        current_password = current_password or ""
        new_password = new_password or ""
        confirm_password = confirm_password or ""

        if not current_password:
            result.add(CURRENT_FIELD, "Current password is required")

        if len(new_password) < self.min_length:
            result.add(NEW_FIELD, f"Password must be at least {self.min_length} characters")
        for pattern, message in _CHARACTER_RULES:
            if not pattern.search(new_password):
                result.add(NEW_FIELD, message)

        if new_password != confirm_password:
            result.add(CONFIRM_FIELD, "Passwords don't match")

        return result
