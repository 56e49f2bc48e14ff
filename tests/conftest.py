import sys
from pathlib import Path as _Path
sys.path.insert(0, str(_Path(__file__).resolve().parents[1] / "src"))

from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import delete

from homex.auth.passwords import hash_password
from homex.auth.session import Role
from homex.infra.db import Database
from homex.infra.models import Account
from homex.infra.user_repo import UserRepository

DEFAULT_PASSWORD = "Passw0rd!"


@pytest.fixture(autouse=True)
def secret_key(monkeypatch):
    monkeypatch.setenv("HOMEX_SECRET_KEY", "test-secret-key-that-is-long-enough-0123456789")


@pytest.fixture()
def database(tmp_path: Path):
    """File-backed SQLite so every ORM session gets its own connection."""
    db = Database(f"sqlite:///{tmp_path / 'homex.db'}")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture()
def db(database):
    s = database.session()
    yield s
    s.close()


@pytest.fixture()
def make_user(database):
    """Create a user + credential account and return its id."""

    def _make(
        email: str = "admin@homex.local",
        role: Role = Role.ADMIN,
        password: str = DEFAULT_PASSWORD,
        must_change_password: bool = True,
        name: str = "Admin User",
        with_account: bool = True,
    ) -> str:
        s = database.session()
        try:
            repo = UserRepository(s)
            with repo.transaction():
                user = repo.create_user(
                    email=email,
                    name=name,
                    role=role.value,
                    password_hash=hash_password(password),
                    must_change_password=must_change_password,
                )
                if not with_account:
                    s.execute(delete(Account).where(Account.user_id == user.id))
            return user.id
        finally:
            s.close()

    return _make


@pytest.fixture()
def client(database):
    from homex.app import create_app

    app = create_app(database)
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def sign_in(client):
    def _sign_in(email: str, password: str = DEFAULT_PASSWORD, callback: str = ""):
        return client.post(
            "/signin",
            data={"email": email, "password": password, "callbackUrl": callback},
            follow_redirects=False,
        )

    return _sign_in
