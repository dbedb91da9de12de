#!/usr/bin/env python3
"""
Container entry point: migrate and seed, then hand the process over to gunicorn.

    python scripts/start.py

PORT defaults to 8080. WEB_CONCURRENCY sets the worker count (default 2).
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _port() -> int:
    raw = os.environ.get("PORT", "").strip() or "8080"
    try:
        port = int(raw)
    except ValueError:
        port = 0
    if not 1 <= port <= 65535:
        sys.exit(f"start: PORT={raw!r} is not a valid TCP port")
    return port


def gunicorn_argv(port: int) -> list[str]:
    workers = os.environ.get("WEB_CONCURRENCY", "2")
    return [
        "gunicorn",
        "app.wsgi:app",
        f"--bind=0.0.0.0:{port}",
        f"--workers={workers}",
        # direct uploads stream through a worker when storage is local
        "--timeout=120",
        "--preload",
        "--access-logfile=-",
        "--error-logfile=-",
    ]


def main() -> None:
    port = _port()

    from scripts.release import run_release

    print("start: release phase", flush=True)
    try:
        run_release()
    except Exception as e:
        sys.exit(f"start: release failed: {e}")

    argv = gunicorn_argv(port)
    print(f"start: exec {' '.join(argv)}", flush=True)
    # gunicorn replaces this process so it receives signals as PID 1
    os.execvp(argv[0], argv)


if __name__ == "__main__":
    main()
