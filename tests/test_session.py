from __future__ import annotations

from core.session import CredentialsProvider, SessionContext, SessionUser, UserAccount


def _provider():
    return CredentialsProvider([UserAccount.with_password("1", "Admin User", "Admin@Example.com", "password123")])


def test_valid_credentials_authenticate():
    session = _provider().authenticate(" admin@example.com ", "password123")
    assert session.status == "authenticated"
    assert session.user_id == "1"
    assert session.current_user().name == "Admin User"


def test_invalid_credentials_stay_anonymous():
    provider = _provider()
    assert provider.authenticate("admin@example.com", "wrong-password").user_id is None
    assert provider.authenticate("admin@example.com", "short").status == "unauthenticated"
    assert provider.authenticate("not-an-email", "password123").user_id is None
    assert provider.authenticate("", "").is_authenticated is False


def test_loading_session_has_no_user():
    session = SessionContext(status="loading", user=SessionUser(id="1"))
    assert session.current_user() is None
    assert session.user_id is None
    assert SessionContext.loading().status == "loading"


def test_user_without_id_is_not_authenticated():
    session = SessionContext.authenticated(SessionUser(id=""))
    assert session.user_id is None
    assert not session.is_authenticated
