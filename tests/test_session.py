import threading
from datetime import timedelta

from homex.auth.session import Role, SessionData, SessionStore, _utcnow, sign_token, unsign_token
from homex.infra.models import AuthSession
from homex.permissions import SessionResolver


class CountingStore:
    def __init__(self, value):
        self.value = value
        self.calls = 0

    def get_session(self, cookie_value):
        self.calls += 1
        return self.value


def _session(role=Role.ADMIN, must_change=False):
    return SessionData(user_id="u1", role=role, must_change_password=must_change, name="Admin User")


def test_resolver_consults_store_once_and_returns_same_object():
    store = CountingStore(_session())
    resolver = SessionResolver(store, "cookie")

    first = resolver.resolve()
    second = resolver.resolve()

    assert first is second
    assert store.calls == 1


def test_resolver_memoizes_missing_session_too():
    store = CountingStore(None)
    resolver = SessionResolver(store, "cookie")
    assert resolver.resolve() is None
    assert resolver.resolve() is None
    assert store.calls == 1


def test_resolver_without_cookie_skips_store():
    store = CountingStore(_session())
    assert SessionResolver(store, "").resolve() is None
    assert store.calls == 0


def test_resolver_single_lookup_under_concurrent_callers():
    store = CountingStore(_session())
    resolver = SessionResolver(store, "cookie")
    seen = []

    threads = [threading.Thread(target=lambda: seen.append(resolver.resolve())) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert store.calls == 1
    assert all(s is seen[0] for s in seen)


def test_separate_resolvers_do_not_share_values():
    a = SessionResolver(CountingStore(_session(Role.ADMIN)), "cookie-a")
    b = SessionResolver(CountingStore(_session(Role.OPERATOR)), "cookie-b")
    assert a.resolve().role is Role.ADMIN
    assert b.resolve().role is Role.OPERATOR


def test_invalidate_forces_a_fresh_lookup():
    store = CountingStore(_session(must_change=True))
    resolver = SessionResolver(store, "cookie")
    resolver.resolve()
    store.value = _session(must_change=False)

    resolver.invalidate()

    assert resolver.resolve().must_change_password is False
    assert store.calls == 2


def test_store_roundtrip_and_revoke(db, make_user):
    uid = make_user(role=Role.OPERATOR, must_change_password=False, name="Op One")
    store = SessionStore(db)

    cookie = store.create_session(uid, ip_address="127.0.0.1", user_agent="pytest")
    session = store.get_session(cookie)

    assert session is not None
    assert session.user_id == uid
    assert session.role is Role.OPERATOR
    assert session.must_change_password is False
    assert session.name == "Op One"

    store.revoke_session(cookie)
    assert store.get_session(cookie) is None


def test_store_rejects_tampered_and_unknown_tokens(db, make_user):
    make_user()
    store = SessionStore(db)
    assert store.get_session("garbage") is None
    assert store.get_session(sign_token("no-such-token")) is None


def test_store_rejects_expired_session(db, make_user):
    uid = make_user()
    store = SessionStore(db)
    cookie = store.create_session(uid)

    row = db.query(AuthSession).filter(AuthSession.user_id == uid).one()
    row.expires_at = _utcnow() - timedelta(seconds=1)
    db.commit()

    assert store.get_session(cookie) is None


def test_expired_session_row_is_removed_on_lookup(db, make_user):
    uid = make_user()
    store = SessionStore(db)
    cookie = store.create_session(uid)
    fresh = store.create_session(uid)

    rows = db.query(AuthSession).filter(AuthSession.user_id == uid).all()
    stale = next(r for r in rows if r.token == unsign_token(cookie))
    stale_id = stale.id
    stale.expires_at = _utcnow() - timedelta(seconds=1)
    db.commit()

    assert store.get_session(cookie) is None
    db.expire_all()
    assert db.get(AuthSession, stale_id) is None
    # other sessions of the same user are untouched
    assert store.get_session(fresh) is not None
