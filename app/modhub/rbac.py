from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import g

from app.modhub.errors import AuthError, ForbiddenError
from app.modhub.models import User


def has_role(user: User | None, role: str) -> bool:
    if not user:
        return False
    if role == "admin":
        return user.role == "admin"
    if role == "supporter":
        return user.is_supporter
    return True


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        if getattr(g, "current_user", None) is None:
            raise AuthError("Unauthorized")
        return fn(*args, **kwargs)

    return wrapped


def require_role(role: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            # Unauthenticated -> 401, authenticated but unauthorized -> 403
            if user is None:
                raise AuthError("Unauthorized")
            if not has_role(user, role):
                g.missing_role = role
                raise ForbiddenError(f"{role} role required")
            return fn(*args, **kwargs)

        return wrapped

    return decorator
