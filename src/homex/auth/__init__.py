# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Authentication helpers.

This package provides:
- Password hashing/verification (argon2)
- Password strength policy for the change-password form
- Server-side sessions behind a signed cookie (itsdangerous)
- User lookup, credential authentication and YAML seeding
"""
