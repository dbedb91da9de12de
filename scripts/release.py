"""
Release phase: apply Alembic migrations, then run the idempotent seed.

Refuses to start without a database URL, and refuses SQLite when ENV is
production. The seed never resets an existing admin password.

    python scripts/release.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def database_url_for_release() -> str:
    url = (os.environ.get("DATABASE_URI") or os.environ.get("DATABASE_URL") or "").strip()
    if not url:
        raise RuntimeError("Set DATABASE_URI (or DATABASE_URL) before running the release phase.")
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production") and url.startswith("sqlite"):
        raise RuntimeError("SQLite is not a production database; point DATABASE_URI at Postgres.")
    return url


def migrate(url: str) -> None:
    from alembic import command
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", url)
    command.upgrade(cfg, "head")


def run_release() -> None:
    url = database_url_for_release()

    print("release: alembic upgrade head", flush=True)
    migrate(url)

    print("release: seeding categories, sample games, settings and admin", flush=True)
    from scripts import init_db

    init_db.seed_only(database_url=url)
    print("release: done", flush=True)


if __name__ == "__main__":
    run_release()
