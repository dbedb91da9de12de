from __future__ import annotations

import base64
import hashlib
import re
import secrets
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, Response, current_app, g, jsonify, request
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash

from app.modhub.audit import record_event
from app.modhub.constants import SESSION_LIFETIME_DAYS, SESSION_RENEW_WITHIN_DAYS
from app.modhub.db import db_session
from app.modhub.errors import AuthError, ForbiddenError, NotFoundError, RateLimitError, ValidationError
from app.modhub.models import User, UserFollow, UserSession
from app.modhub.rbac import require_login
from app.modhub.utils import isoformat, utcnow

bp = Blueprint("auth", __name__)

_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds

_USERNAME_RE = re.compile(r"^[a-zA-Z0-9_-]+$")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


# --- session tokens -------------------------------------------------------


def generate_session_token() -> str:
    """20 random bytes, lowercase base32 without padding."""
    raw = secrets.token_bytes(20)
    return base64.b32encode(raw).decode("ascii").lower().rstrip("=")


def session_id_for_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_session(s: Session, token: str, user_id: int, *, now: datetime | None = None) -> UserSession:
    now = now or utcnow()
    us = UserSession(
        id=session_id_for_token(token),
        user_id=user_id,
        expires_at=now + timedelta(days=SESSION_LIFETIME_DAYS),
    )
    s.add(us)
    s.flush()
    return us


def check_session_token(
    s: Session, token: str, *, now: datetime | None = None
) -> tuple[UserSession | None, User | None, bool]:
    """
    Returns (session, user, renewed). Expired rows are deleted; sessions inside the
    renewal window get a fresh full lifetime.
    """
    now = now or utcnow()
    us = s.get(UserSession, session_id_for_token(token))
    if us is None or us.user is None:
        return None, None, False
    if now >= us.expires_at:
        s.delete(us)
        s.flush()
        return None, None, False
    renewed = False
    if now >= us.expires_at - timedelta(days=SESSION_RENEW_WITHIN_DAYS):
        us.expires_at = now + timedelta(days=SESSION_LIFETIME_DAYS)
        s.flush()
        renewed = True
    return us, us.user, renewed


def validate_session_token(
    s: Session, token: str, *, now: datetime | None = None
) -> tuple[UserSession | None, User | None]:
    us, user, _ = check_session_token(s, token, now=now)
    return us, user


def invalidate_session(s: Session, session_id: str) -> None:
    s.execute(delete(UserSession).where(UserSession.id == session_id))


def invalidate_all_sessions(s: Session, user_id: int) -> None:
    s.execute(delete(UserSession).where(UserSession.user_id == user_id))


# --- cookies --------------------------------------------------------------


def set_session_cookie(response: Response, token: str, expires_at: datetime) -> None:
    response.set_cookie(
        current_app.config.get("AUTH_COOKIE_NAME", "session"),
        token,
        expires=expires_at,
        path="/",
        httponly=True,
        samesite="Lax",
        secure=bool(current_app.config.get("AUTH_COOKIE_SECURE")),
    )


def delete_session_cookie(response: Response) -> None:
    response.set_cookie(
        current_app.config.get("AUTH_COOKIE_NAME", "session"),
        "",
        max_age=0,
        path="/",
        httponly=True,
        samesite="Lax",
        secure=bool(current_app.config.get("AUTH_COOKIE_SECURE")),
    )


def _session_token() -> str | None:
    return request.cookies.get(current_app.config.get("AUTH_COOKIE_NAME", "session")) or None


# --- validation -----------------------------------------------------------


def is_valid_username(username: str) -> bool:
    return 3 <= len(username) <= 32 and bool(_USERNAME_RE.match(username))


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email))


def is_valid_password(password: str) -> bool:
    return len(password) >= 8


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def login_blocked_reason(user: User, now: datetime | None = None) -> str | None:
    now = now or utcnow()
    if user.role == "banned":
        return "Account is banned"
    if user.role == "suspended" and (user.suspended_until is None or user.suspended_until > now):
        until = isoformat(user.suspended_until)
        return f"Account is suspended until {until}" if until else "Account is suspended"
    return None


# --- rate limiting --------------------------------------------------------


def _attempts() -> dict[str, list[datetime]]:
    return current_app.extensions.setdefault("login_attempts", defaultdict(list))


def _check_rate_limit(ip: str) -> bool:
    cutoff = utcnow() - timedelta(seconds=_LOGIN_RATE_WINDOW)
    attempts = _attempts()
    attempts[ip] = [t for t in attempts[ip] if t > cutoff]
    return len(attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_failed_attempt(ip: str) -> None:
    _attempts()[ip].append(utcnow())


# --- request hook ---------------------------------------------------------


def load_current_user() -> None:
    """
    Resolves g.current_user / g.current_session from the session cookie.
    A renewed session is re-issued to the browser in the after_request hook.
    """
    g.current_user = None
    g.current_session = None
    g.renewed_session_token = None
    token = _session_token()
    if not token:
        return

    try:
        s = db_session()
        us, user, renewed = check_session_token(s, token)
        s.commit()
    except SQLAlchemyError as e:
        current_app.logger.error("load_current_user DB error (treating as anonymous): %s", e)
        db_session().rollback()
        return
    if us is None or user is None or login_blocked_reason(user):
        return
    g.current_user = user
    g.current_session = us
    if renewed:
        g.renewed_session_token = token


def refresh_session_cookie(response: Response) -> Response:
    token = getattr(g, "renewed_session_token", None)
    us = getattr(g, "current_session", None)
    if token and us is not None and current_app.config.get("AUTH_COOKIE_NAME", "session") not in _cookie_names(response):
        set_session_cookie(response, token, us.expires_at)
    return response


def _cookie_names(response: Response) -> set[str]:
    names = set()
    for header in response.headers.getlist("Set-Cookie"):
        names.add(header.split("=", 1)[0].strip())
    return names


# --- routes ---------------------------------------------------------------


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


@bp.post("/auth/signup")
def signup():
    payload = _json_body()
    username = payload.get("username")
    email = payload.get("email")
    password = payload.get("password")
    if not isinstance(username, str) or not isinstance(email, str) or not isinstance(password, str):
        raise ValidationError("Invalid input")
    if not is_valid_username(username):
        raise ValidationError(
            "Username must be 3-32 characters and contain only letters, numbers, hyphens, and underscores",
            {"username": ["Invalid username"]},
        )
    if not is_valid_email(email):
        raise ValidationError("Invalid email format", {"email": ["Invalid email format"]})
    if not is_valid_password(password):
        raise ValidationError("Password must be at least 8 characters long", {"password": ["Too short"]})

    s = db_session()
    if s.scalar(select(User).where(User.username == username)):
        raise ValidationError("Username already taken", {"username": ["Already taken"]})
    if s.scalar(select(User).where(User.email == email)):
        raise ValidationError("Email already registered", {"email": ["Already registered"]})

    user = User(username=username, email=email, password_hash=hash_password(password))
    s.add(user)
    s.flush()
    record_event(s, actor=user, action="auth.signup", entity_type="User", entity_id=str(user.id))
    s.commit()
    return (
        jsonify(
            {
                "message": "Account created successfully",
                "user": {"id": user.id, "username": user.username, "email": user.email},
            }
        ),
        201,
    )


@bp.post("/auth/login")
def login():
    payload = _json_body()
    username = payload.get("username")
    password = payload.get("password")
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        raise RateLimitError("Too many login attempts. Please wait 5 minutes.")
    if not isinstance(username, str) or not isinstance(password, str):
        raise ValidationError("Invalid input")
    if not is_valid_username(username):
        raise ValidationError("Invalid username format")

    s = db_session()
    user = s.scalar(select(User).where(User.username == username))
    if not user or not check_password_hash(user.password_hash, password):
        _record_failed_attempt(ip)
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="User",
            entity_id=username,
            metadata={"username": username},
        )
        s.commit()
        raise ValidationError("Invalid username or password")

    blocked = login_blocked_reason(user)
    if blocked:
        raise ForbiddenError(blocked)

    token = generate_session_token()
    us = create_session(s, token, user.id)
    _attempts().pop(ip, None)
    record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
    s.commit()

    resp = jsonify({"message": "Login successful", "user": user.to_dict()})
    set_session_cookie(resp, token, us.expires_at)
    return resp


@bp.post("/auth/logout")
def logout():
    s = db_session()
    us = getattr(g, "current_session", None)
    if us is not None:
        record_event(s, actor=g.current_user, action="auth.logout", entity_type="User", entity_id=str(us.user_id))
        invalidate_session(s, us.id)
        s.commit()
    g.renewed_session_token = None
    resp = jsonify({"message": "Logout successful"})
    delete_session_cookie(resp)
    return resp


@bp.get("/auth/status")
def status():
    user = getattr(g, "current_user", None)
    us = getattr(g, "current_session", None)
    if user is None or us is None:
        return jsonify({"user": None, "session": None}), 401
    return jsonify(
        {
            "user": user.to_dict(),
            "session": {"id": us.id, "expiresAt": isoformat(us.expires_at)},
        }
    )


@bp.get("/user/me")
def me():
    user = getattr(g, "current_user", None)
    if user is None:
        raise AuthError("Not authenticated")
    return jsonify(
        {
            "id": user.id,
            "username": user.username,
            "email": user.email,
            "profilePicture": user.profile_picture,
            "role": user.role,
        }
    )


@bp.post("/users/<username>/follow")
@require_login
def toggle_follow(username: str):
    s = db_session()
    user: User = g.current_user
    target = s.scalar(select(User).where(User.username == username))
    if target is None:
        raise NotFoundError("User not found")
    if target.id == user.id:
        raise ValidationError("You cannot follow yourself")

    existing = s.scalar(
        select(UserFollow).where(UserFollow.follower_id == user.id, UserFollow.following_id == target.id)
    )
    if existing is not None:
        s.delete(existing)
        following = False
    else:
        s.add(UserFollow(follower_id=user.id, following_id=target.id))
        following = True
    s.flush()
    follower_count = s.scalar(select(func.count(UserFollow.id)).where(UserFollow.following_id == target.id)) or 0
    s.commit()
    return jsonify({"following": following, "followerCount": follower_count})
