from __future__ import annotations

from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException


class ApiError(Exception):
    status_code = 400

    def __init__(self, message: str, *, status_code: int | None = None, **extra):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra

    def to_dict(self) -> dict:
        d = {"error": self.message}
        d.update({k: v for k, v in self.extra.items() if v is not None})
        return d


class ValidationError(ApiError):
    status_code = 400

    def __init__(self, message: str, fields: dict[str, list[str]] | None = None, **extra):
        super().__init__(message, fields=fields or None, **extra)
        self.fields = fields or {}


class AuthError(ApiError):
    status_code = 401

    def __init__(self, message: str = "Unauthorized", **extra):
        super().__init__(message, **extra)


class ForbiddenError(ApiError):
    status_code = 403

    def __init__(self, message: str = "Forbidden", **extra):
        super().__init__(message, **extra)


class NotFoundError(ApiError):
    status_code = 404

    def __init__(self, message: str = "Not found", **extra):
        super().__init__(message, **extra)


class ConflictError(ApiError):
    status_code = 409


class RateLimitError(ApiError):
    status_code = 429


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ApiError)
    def _api_error(e: ApiError):  # type: ignore[no-redef]
        if e.status_code >= 500:
            app.logger.error("API error %s (request_id=%s): %s", e.status_code, getattr(g, "request_id", None), e.message)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        return jsonify({"error": "File too large"}), 413

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):  # type: ignore[no-redef]
        if not request.path.startswith("/api"):
            return e
        return jsonify({"error": e.description or e.name}), e.code or 500

    @app.errorhandler(Exception)
    def _err_500(e):  # type: ignore[no-redef]
        # Ensure stack trace shows in logs.
        rid = getattr(g, "request_id", None)
        s = getattr(g, "db_session", None)
        if s is not None:
            s.rollback()
        app.logger.exception("Unhandled 500 (request_id=%s)", rid)
        return jsonify({"error": "Internal server error", "requestId": rid}), 500
