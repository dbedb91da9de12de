"""Session token lifecycle: creation, validation, sliding renewal, expiry and invalidation."""
from datetime import timedelta

import pytest
from werkzeug.security import generate_password_hash

from app.modhub import create_app
from app.modhub.auth import (
    check_session_token,
    create_session,
    generate_session_token,
    invalidate_all_sessions,
    invalidate_session,
    login_blocked_reason,
    session_id_for_token,
    validate_session_token,
)
from app.modhub.db import session_scope
from app.modhub.models import Base, User, UserSession
from app.modhub.utils import utcnow


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("LOCAL_STORAGE_ROOT", str(tmp_path / "storage"))
    for k in ("DATABASE_URI", "S3_ENDPOINT", "ENDPOINT", "S3_BUCKET_NAME", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    with session_scope(app) as s:
        s.add(User(username="alice", email="alice@example.com", password_hash=generate_password_hash("password1")))
    return app


def _user_id(s) -> int:
    return s.query(User).filter(User.username == "alice").one().id


def test_token_format_and_hashing():
    token = generate_session_token()
    # 20 bytes -> 32 base32 chars, lowercase, no padding
    assert len(token) == 32
    assert token == token.lower()
    assert "=" not in token
    assert generate_session_token() != token

    sid = session_id_for_token(token)
    assert len(sid) == 64
    assert sid == session_id_for_token(token)
    assert sid != token


def test_valid_token_returns_user(app):
    token = generate_session_token()
    with session_scope(app) as s:
        us = create_session(s, token, _user_id(s))
        assert us.id == session_id_for_token(token)
        assert us.expires_at - utcnow() > timedelta(days=29)

    with session_scope(app) as s:
        us, user = validate_session_token(s, token)
        assert us is not None
        assert user.username == "alice"


def test_unknown_token_is_anonymous(app):
    with session_scope(app) as s:
        assert validate_session_token(s, generate_session_token()) == (None, None)


def test_expired_session_is_deleted(app):
    token = generate_session_token()
    start = utcnow()
    with session_scope(app) as s:
        create_session(s, token, _user_id(s), now=start)

    with session_scope(app) as s:
        us, user, renewed = check_session_token(s, token, now=start + timedelta(days=30))
        assert (us, user, renewed) == (None, None, False)

    with session_scope(app) as s:
        assert s.get(UserSession, session_id_for_token(token)) is None


def test_no_renewal_outside_window(app):
    token = generate_session_token()
    start = utcnow()
    with session_scope(app) as s:
        created = create_session(s, token, _user_id(s), now=start)
        original_expiry = created.expires_at

    with session_scope(app) as s:
        us, user, renewed = check_session_token(s, token, now=start + timedelta(days=10))
        assert user is not None
        assert renewed is False
        assert us.expires_at == original_expiry


def test_sliding_renewal_inside_window(app):
    token = generate_session_token()
    start = utcnow()
    with session_scope(app) as s:
        create_session(s, token, _user_id(s), now=start)

    later = start + timedelta(days=16)
    with session_scope(app) as s:
        us, user, renewed = check_session_token(s, token, now=later)
        assert renewed is True
        assert us.expires_at == later + timedelta(days=30)

    with session_scope(app) as s:
        assert s.get(UserSession, session_id_for_token(token)).expires_at == later + timedelta(days=30)


def test_invalidate_session_and_all(app):
    t1, t2 = generate_session_token(), generate_session_token()
    with session_scope(app) as s:
        uid = _user_id(s)
        create_session(s, t1, uid)
        create_session(s, t2, uid)

    with session_scope(app) as s:
        invalidate_session(s, session_id_for_token(t1))
    with session_scope(app) as s:
        assert validate_session_token(s, t1) == (None, None)
        assert validate_session_token(s, t2)[1] is not None
        invalidate_all_sessions(s, _user_id(s))
    with session_scope(app) as s:
        assert validate_session_token(s, t2) == (None, None)


def test_login_blocked_reason():
    now = utcnow()
    assert login_blocked_reason(User(role="user"), now) is None
    assert login_blocked_reason(User(role="banned"), now) == "Account is banned"
    assert login_blocked_reason(User(role="suspended", suspended_until=now + timedelta(days=1)), now).startswith(
        "Account is suspended"
    )
    # suspension over
    assert login_blocked_reason(User(role="suspended", suspended_until=now - timedelta(days=1)), now) is None
