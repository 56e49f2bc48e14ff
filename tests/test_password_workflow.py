import pytest
from sqlalchemy.exc import OperationalError

from homex.auth.passwords import HashingUnavailable, verify_password
from homex.auth.session import Role, SessionStore, session_from_user
from homex.infra.models import Account, User
from homex.infra.user_repo import UserRepository
from homex.permissions import SessionResolver
from homex.services.password_service import ChangeStatus, PasswordChangeWorkflow


def _records(database, uid):
    s = database.session()
    try:
        user = s.get(User, uid)
        account = s.query(Account).filter(Account.user_id == uid).one_or_none()
        return (
            (user.password, user.must_change_password),
            account.password if account is not None else None,
        )
    finally:
        s.close()


def _actor(db, uid):
    return session_from_user(db.get(User, uid))


def test_completed_change_updates_both_records_and_clears_flag(database, db, make_user):
    uid = make_user(must_change_password=True)
    cookie = SessionStore(db).create_session(uid)
    resolver = SessionResolver(SessionStore(db), cookie)
    assert resolver.resolve().must_change_password is True

    workflow = PasswordChangeWorkflow(UserRepository(db), resolver=resolver)
    result = workflow.execute(resolver.resolve(), "Passw0rd!", "NewPass1", "NewPass1", redirect_to="/admin")

    assert result.status is ChangeStatus.COMPLETED
    assert result.success
    assert result.redirect_to == "/admin"
    assert result.message == "Password changed successfully"

    (user_hash, must_change), account_hash = _records(database, uid)
    assert must_change is False
    assert user_hash == account_hash
    assert verify_password(account_hash, "NewPass1")

    # same request, after invalidation
    assert resolver.resolve().must_change_password is False
    # next request
    s = database.session()
    try:
        assert SessionStore(s).get_session(cookie).must_change_password is False
    finally:
        s.close()


def test_wrong_current_password_changes_nothing(database, db, make_user):
    uid = make_user()
    before = _records(database, uid)

    result = PasswordChangeWorkflow(UserRepository(db)).execute(
        _actor(db, uid), "WrongPass1", "NewPass1", "NewPass1"
    )

    assert result.status is ChangeStatus.CURRENT_PASSWORD_INCORRECT
    assert result.errors == {"current_password": ["Current password is incorrect"]}
    assert _records(database, uid) == before


class SpyRepo:
    def __init__(self):
        self.lookups = 0

    def find_credential_record(self, user_id):
        self.lookups += 1
        raise AssertionError("lookup must not happen")


class SpyVerifier:
    def __init__(self):
        self.calls = 0

    def verify(self, stored_hash, candidate):
        self.calls += 1
        return True

    def hash(self, plain):
        self.calls += 1
        return "hash"


def test_policy_failure_stops_before_any_lookup(db, make_user):
    uid = make_user()
    repo, verifier = SpyRepo(), SpyVerifier()

    result = PasswordChangeWorkflow(repo, verifier=verifier).execute(_actor(db, uid), "Passw0rd!", "short1A", "short1A")

    assert result.status is ChangeStatus.VALIDATION_FAILED
    assert result.errors == {"new_password": ["Password must be at least 8 characters"]}
    assert repo.lookups == 0
    assert verifier.calls == 0


def test_no_session_is_unauthenticated():
    repo, verifier = SpyRepo(), SpyVerifier()
    result = PasswordChangeWorkflow(repo, verifier=verifier).execute(None, "Passw0rd!", "NewPass1", "NewPass1")
    assert result.status is ChangeStatus.UNAUTHENTICATED
    assert result.errors == {"_form": ["Please sign in to continue"]}
    assert repo.lookups == 0


def test_missing_credential_account_is_a_form_error(db, make_user):
    uid = make_user(with_account=False)
    result = PasswordChangeWorkflow(UserRepository(db)).execute(_actor(db, uid), "Passw0rd!", "NewPass1", "NewPass1")
    assert result.status is ChangeStatus.ACCOUNT_MISCONFIGURED
    assert result.errors == {"_form": ["Your account could not be found"]}


def test_failed_credential_update_rolls_back_user_update(database, db, make_user, monkeypatch):
    uid = make_user()
    before = _records(database, uid)
    calls = []

    def _boom(self, account_id, **fields):
        calls.append(account_id)
        raise OperationalError("UPDATE account", {}, Exception("disk I/O error"))

    monkeypatch.setattr(UserRepository, "update_credential_record", _boom)

    result = PasswordChangeWorkflow(UserRepository(db)).execute(_actor(db, uid), "Passw0rd!", "NewPass1", "NewPass1")

    assert calls, "credential update should have been attempted"
    assert result.status is ChangeStatus.PERSISTENCE_FAILED
    assert result.errors == {"_form": ["Unable to change password. Please try again later."]}
    assert "disk I/O" not in str(result.as_dict())
    assert _records(database, uid) == before


def test_hashing_failure_is_generic(db, make_user):
    uid = make_user()

    class BrokenVerifier(SpyVerifier):
        def verify(self, stored_hash, candidate):
            raise HashingUnavailable("argon2 down")

    result = PasswordChangeWorkflow(UserRepository(db), verifier=BrokenVerifier()).execute(
        _actor(db, uid), "Passw0rd!", "NewPass1", "NewPass1"
    )
    assert result.status is ChangeStatus.HASHING_UNAVAILABLE
    assert result.errors == {"_form": ["Unable to change password. Please try again later."]}


def test_unexpected_error_is_not_leaked(db, make_user):
    uid = make_user()

    class ExplodingRepo(SpyRepo):
        def find_credential_record(self, user_id):
            raise KeyError("internal detail")

    result = PasswordChangeWorkflow(ExplodingRepo()).execute(_actor(db, uid), "Passw0rd!", "NewPass1", "NewPass1")
    assert result.status is ChangeStatus.UNEXPECTED_ERROR
    assert "internal detail" not in str(result.as_dict())


def test_workflow_is_reenterable_after_failure(database, db, make_user):
    uid = make_user(role=Role.OPERATOR)
    workflow = PasswordChangeWorkflow(UserRepository(db))

    first = workflow.execute(_actor(db, uid), "Passw0rd!", "NewPass1", "Mismatch1")
    second = workflow.execute(_actor(db, uid), "Passw0rd!", "NewPass1", "NewPass1")

    assert first.status is ChangeStatus.VALIDATION_FAILED
    assert second.status is ChangeStatus.COMPLETED
    (_, must_change), _ = _records(database, uid)
    assert must_change is False


@pytest.mark.parametrize("status", list(ChangeStatus))
def test_only_completed_counts_as_success(status):
    from homex.services.password_service import ChangePasswordResult

    assert ChangePasswordResult(status=status).success is (status is ChangeStatus.COMPLETED)
