#!/usr/bin/env python3
from __future__ import annotations

from getpass import getpass

from homex.auth.passwords import hash_password
from homex.auth.session import Role
from homex.infra.db import DEFAULT_DATABASE_URL, Database
from homex.infra.user_repo import UserRepository


def main() -> None:
    database = Database(DEFAULT_DATABASE_URL)
    database.create_all()

    email = input("Email: ").strip().lower()
    name = input("Name: ").strip()
    role = Role.parse(input("Role [ADMIN/OPERATOR/CLIENT]: ").strip() or "CLIENT")
    force_in = input("Force password change on first login? [Y/n]: ").strip().lower()
    must_change = (force_in != "n")

    pw1 = getpass("Password: ")
    pw2 = getpass("Repeat password: ")
    if pw1 != pw2:
        raise SystemExit("Passwords don't match")

    db = database.session()
    try:
        repo = UserRepository(db)
        if repo.get_user_by_email(email):
            raise SystemExit(f"User {email} already exists")
        with repo.transaction():
            user = repo.create_user(
                email=email,
                name=name,
                role=role.value,
                password_hash=hash_password(pw1),
                must_change_password=must_change,
            )
    finally:
        db.close()
        database.dispose()
    print(f"OK -> {user.id} ({role.value}) in {DEFAULT_DATABASE_URL}")


if __name__ == "__main__":
    main()
