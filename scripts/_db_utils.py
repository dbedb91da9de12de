from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from app.modhub.db import enforce_sqlite_foreign_keys


def create_script_engine(db_url: str) -> Engine:
    engine = create_engine(db_url, future=True, pool_pre_ping=True, pool_recycle=1800)
    if db_url.startswith("sqlite"):
        enforce_sqlite_foreign_keys(engine)
    return engine


@contextmanager
def script_session(db_url: str) -> Iterator[Session]:
    """One engine, one session, one transaction; the engine is disposed afterwards."""
    engine = create_script_engine(db_url)
    s = Session(bind=engine, autoflush=False, expire_on_commit=False, future=True)
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()
