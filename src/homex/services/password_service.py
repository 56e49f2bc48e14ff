# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from homex.auth.passwords import CredentialVerifier, HashingUnavailable
from homex.auth.policy import CURRENT_FIELD, PasswordPolicy
from homex.auth.session import SessionData
from homex.infra.user_repo import UserRepository
from homex.permissions import Allowed, SessionResolver, authorize
from homex.permissions import redirect_to as redirect_response

logger = logging.getLogger(__name__)

FORM_FIELD = "_form"

MSG_SIGN_IN = "Please sign in to continue"
MSG_ACCOUNT = "Your account could not be found"
MSG_INCORRECT = "Current password is incorrect"
MSG_TRY_LATER = "Unable to change password. Please try again later."
MSG_DONE = "Password changed successfully"


class ChangeStatus(str, Enum):
    COMPLETED = "completed"
    UNAUTHENTICATED = "unauthenticated"
    VALIDATION_FAILED = "validation_failed"
    ACCOUNT_MISCONFIGURED = "account_misconfigured"
    CURRENT_PASSWORD_INCORRECT = "current_password_incorrect"
    HASHING_UNAVAILABLE = "hashing_unavailable"
    PERSISTENCE_FAILED = "persistence_failed"
    UNEXPECTED_ERROR = "unexpected_error"


@dataclass
class ChangePasswordResult:
    status: ChangeStatus
    errors: Dict[str, List[str]] = field(default_factory=dict)
    message: str = ""
    redirect_to: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status is ChangeStatus.COMPLETED

    def as_dict(self) -> dict:
        out: dict = {"success": self.success, "status": self.status.value}
        if self.errors:
            out["errors"] = self.errors
        if self.message:
            out["message"] = self.message
        return out


def _form_error(status: ChangeStatus, message: str) -> ChangePasswordResult:
    return ChangePasswordResult(status=status, errors={FORM_FIELD: [message]})


class PasswordChangeWorkflow:
    """Forced (first login) or voluntary password change.

    Steps run in order and stop at the first failure; nothing is written
    unless every check passed. The user row and the credential account get
    the new hash in a single transaction.
    """

    def __init__(
        self,
        repo: UserRepository,
        verifier: Optional[CredentialVerifier] = None,
        policy: Optional[PasswordPolicy] = None,
        resolver: Optional[SessionResolver] = None,
    ):
        self.repo = repo
        self.verifier = verifier or CredentialVerifier()
        self.policy = policy or PasswordPolicy()
        self.resolver = resolver

    def execute(
        self,
        session: Optional[SessionData],
        current_password: str,
        new_password: str,
        confirm_password: str,
        *,
        redirect_to: Optional[str] = None,
    ) -> ChangePasswordResult:
        try:
            return self._execute(session, current_password, new_password, confirm_password, redirect_to)
        except HashingUnavailable:
            logger.exception("Password hashing failed during password change")
            return _form_error(ChangeStatus.HASHING_UNAVAILABLE, MSG_TRY_LATER)
        except SQLAlchemyError:
            logger.exception("Database error during password change")
            return _form_error(ChangeStatus.PERSISTENCE_FAILED, MSG_TRY_LATER)
        except Exception:
            logger.exception("Error changing password")
            return _form_error(ChangeStatus.UNEXPECTED_ERROR, MSG_TRY_LATER)

    def _execute(self, session, current_password, new_password, confirm_password, redirect_to):
        outcome = authorize(session)
        if not isinstance(outcome, Allowed):
            logger.debug("Password change attempted without a session")
            return _form_error(ChangeStatus.UNAUTHENTICATED, MSG_SIGN_IN)
        user_id = outcome.session.user_id

        checked = self.policy.validate(current_password, new_password, confirm_password)
        if not checked.ok:
            return ChangePasswordResult(status=ChangeStatus.VALIDATION_FAILED, errors=checked.errors)

        account = self.repo.find_credential_record(user_id)
        if account is None or not account.password:
            logger.error("User %s has no credential account with a password", user_id)
            return _form_error(ChangeStatus.ACCOUNT_MISCONFIGURED, MSG_ACCOUNT)

        if not self.verifier.verify(account.password, current_password):
            return ChangePasswordResult(
                status=ChangeStatus.CURRENT_PASSWORD_INCORRECT,
                errors={CURRENT_FIELD: [MSG_INCORRECT]},
            )

        new_hash = self.verifier.hash(new_password)

        try:
            with self.repo.transaction() as tx:
                tx.update_user_record(user_id, password=new_hash, must_change_password=False)
                tx.update_credential_record(account.id, password=new_hash)
        except (SQLAlchemyError, LookupError):
            logger.exception("Could not store new password for user %s", user_id)
            return _form_error(ChangeStatus.PERSISTENCE_FAILED, MSG_TRY_LATER)

        if self.resolver is not None:
            self.resolver.invalidate()
        logger.info("User %s changed their password", user_id)
        return ChangePasswordResult(status=ChangeStatus.COMPLETED, message=MSG_DONE, redirect_to=redirect_to)


def change_password_and_redirect(
    workflow: PasswordChangeWorkflow,
    session: Optional[SessionData],
    current_password: str,
    new_password: str,
    confirm_password: str,
    redirect_to: str,
) -> ChangePasswordResult:
    """Same as ``execute`` but raises a 303 to ``redirect_to`` on success."""
    result = workflow.execute(session, current_password, new_password, confirm_password, redirect_to=redirect_to)
    if result.success:
        raise redirect_response(redirect_to)
    return result
