# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from homex.infra.db import Base

CREDENTIAL_PROVIDER = "credential"


def _uuid() -> str:
    return str(uuid.uuid4())


# =====================================================
# USERS
# =====================================================

class User(Base):
    __tablename__ = "user"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String, unique=True, nullable=False)
    name = Column(String, nullable=False, default="")
    image = Column(String, nullable=True)

    role = Column(String, nullable=False, default="CLIENT")  # ADMIN, OPERATOR, CLIENT
    must_change_password = Column(Boolean, nullable=False, default=True)
    # mirror of the credential account hash, always written together with it
    password = Column(String, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    accounts = relationship("Account", back_populates="user", cascade="all, delete-orphan")
    sessions = relationship("AuthSession", back_populates="user", cascade="all, delete-orphan")


# =====================================================
# ACCOUNTS (one row per auth provider)
# =====================================================

class Account(Base):
    __tablename__ = "account"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("user.id", ondelete="CASCADE"), nullable=False, index=True)
    provider_id = Column(String, nullable=False, default=CREDENTIAL_PROVIDER)
    account_id = Column(String, nullable=False)
    password = Column(String, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="accounts")


# =====================================================
# SESSIONS
# =====================================================

class AuthSession(Base):
    __tablename__ = "session"

    id = Column(String(36), primary_key=True, default=_uuid)
    token = Column(String, unique=True, nullable=False)
    user_id = Column(String(36), ForeignKey("user.id", ondelete="CASCADE"), nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    user = relationship("User", back_populates="sessions")
