# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterator

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = os.getenv("HOMEX_DATABASE_URL", "sqlite:///data/homex.db")

Base = declarative_base()


class Database:
    """Process-wide engine + session factory.

    Built once at startup (see ``homex.app.create_app``) and disposed at
    shutdown. Request handlers get a fresh ``Session`` through ``get_db``.
    """

    def __init__(self, url: str = DEFAULT_DATABASE_URL):
        self.url = url
        self.engine = create_engine(url, pool_pre_ping=True, **_engine_kwargs(url))
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)

    def create_all(self) -> None:
        # models must be imported so their tables are registered on Base
        from homex.infra import models  # noqa: F401

        Base.metadata.create_all(self.engine)

    def session(self) -> Session:
        return self.SessionLocal()

    def dispose(self) -> None:
        logger.info("Disposing database engine %s", self.engine.url.render_as_string(hide_password=True))
        self.engine.dispose()


def _engine_kwargs(url: str) -> dict:
    if not url.startswith("sqlite"):
        return {}
    # file-backed sqlite: make sure the parent dir exists
    _, sep, db_path = url.partition(":///")
    if sep and db_path and db_path != ":memory:":
        Path(db_path).resolve().parent.mkdir(parents=True, exist_ok=True)
    return {"connect_args": {"check_same_thread": False}}


def session_scope(database: Database) -> Iterator[Session]:
    db = database.session()
    try:
        yield db
    finally:
        db.close()


def get_db(request: Request) -> Iterator[Session]:
    """FastAPI dependency: one ORM session per request."""
    yield from session_scope(request.app.state.database)
