"""
Logging setup: readable text in development, one JSON object per line in production.
Every request gets an id (g.request_id) echoed back as X-Request-ID.
"""
from __future__ import annotations

import json
import logging
import re
import sys
import time
import traceback
import uuid
from typing import Any

from flask import Flask, g, has_request_context, request

# client supplied ids must fit audit_events.request_id
_REQUEST_ID_RE = re.compile(r"[A-Za-z0-9._-]{1,64}")

_RESERVED = {
    "name", "msg", "args", "created", "filename", "funcName", "levelname", "levelno", "lineno",
    "module", "msecs", "pathname", "process", "processName", "relativeCreated", "stack_info",
    "exc_info", "exc_text", "thread", "threadName", "message", "taskName",
}


def _request_context() -> dict[str, Any]:
    if not has_request_context():
        return {}
    ctx: dict[str, Any] = {}
    rid = getattr(g, "request_id", None)
    if rid:
        ctx["request_id"] = rid
    user = getattr(g, "current_user", None)
    if user is not None:
        ctx["user_id"] = user.id
    return ctx


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        data: dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S") + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        data.update(_request_context())
        if record.exc_info and record.exc_info[0]:
            data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info),
            }
        for key, value in record.__dict__.items():
            if key not in _RESERVED and not key.startswith("_") and key not in data:
                data[key] = value
        return json.dumps(data, default=str)


class ContextualFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        record.request_id = _request_context().get("request_id", "-")
        return super().format(record)


def configure_logging(app: Flask) -> None:
    level = getattr(logging, str(app.config.get("LOG_LEVEL") or "INFO").upper(), logging.INFO)
    handler = logging.StreamHandler(sys.stdout)
    env = (app.config.get("ENV") or "").strip().lower()
    formatter: logging.Formatter
    if env in ("prod", "production"):
        formatter = JSONFormatter()
    else:
        formatter = ContextualFormatter("%(asctime)s %(levelname)s [%(request_id)s] %(name)s: %(message)s")
    handler.setFormatter(formatter)

    root = logging.getLogger()
    # create_app runs once per test; don't stack handlers.
    for h in list(root.handlers):
        if getattr(h, "_modhub", False):
            root.removeHandler(h)
    handler._modhub = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    root.setLevel(level)
    app.logger.setLevel(level)


def register_request_logging(app: Flask) -> None:
    @app.before_request
    def _start_request():  # type: ignore[no-redef]
        incoming = request.headers.get("X-Request-ID", "")
        g.request_id = incoming if _REQUEST_ID_RE.fullmatch(incoming) else uuid.uuid4().hex
        g.request_started = time.perf_counter()
        if not request.path.startswith(("/health", "/healthz")):
            app.logger.debug("%s %s started", request.method, request.path)

    @app.after_request
    def _log_response(response):  # type: ignore[no-redef]
        rid = getattr(g, "request_id", None)
        if rid:
            response.headers["X-Request-ID"] = rid
        if request.path.startswith(("/health", "/healthz")):
            return response
        started = getattr(g, "request_started", None)
        duration_ms = round((time.perf_counter() - started) * 1000, 1) if started else None
        user = getattr(g, "current_user", None)
        app.logger.info(
            "%s %s -> %s (%sms)",
            request.method,
            request.path,
            response.status_code,
            duration_ms,
            extra={
                "status": response.status_code,
                "duration_ms": duration_ms,
                "method": request.method,
                "path": request.path,
                "user": user.id if user is not None else None,
            },
        )
        return response
