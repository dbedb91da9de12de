from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from flask import Flask, current_app, g
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

ENGINE_KEY = "sqlalchemy_engine"
SESSIONMAKER_KEY = "sqlalchemy_sessionmaker"


def _engine_options(app: Flask, url: str) -> dict[str, object]:
    options: dict[str, object] = {"future": True, "pool_pre_ping": True}
    if url.startswith("postgres"):
        # Managed Postgres drops idle connections, recycle well before that.
        options["pool_size"] = app.config.get("DB_POOL_SIZE", 10)
        options["max_overflow"] = 0
        options["pool_timeout"] = 30
        options["pool_recycle"] = app.config.get("DB_POOL_RECYCLE", 1800)
        options["connect_args"] = {"connect_timeout": app.config.get("DB_CONNECT_TIMEOUT", 10)}
    return options


def enforce_sqlite_foreign_keys(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, _record):  # type: ignore[no-redef]
        cur = dbapi_connection.cursor()
        try:
            cur.execute("PRAGMA foreign_keys=ON")
        finally:
            cur.close()


def init_db(app: Flask) -> None:
    """Create the engine and session factory and park them on `app.extensions`."""
    url = app.config["DATABASE_URL"]
    engine = create_engine(url, **_engine_options(app, url))
    if url.startswith("sqlite"):
        # mod children and collection entries rely on ON DELETE CASCADE
        enforce_sqlite_foreign_keys(engine)

    app.extensions[ENGINE_KEY] = engine
    app.extensions[SESSIONMAKER_KEY] = sessionmaker(
        bind=engine,
        class_=Session,
        autoflush=False,
        expire_on_commit=False,
        future=True,
    )


def db_session(app: Flask | None = None) -> Session:
    """Session bound to the current request, opened lazily on first use."""
    s = getattr(g, "db_session", None)
    if s is None:
        factory = (app or current_app).extensions[SESSIONMAKER_KEY]
        s = factory()
        g.db_session = s
    return s


def teardown_db_session(exc: BaseException | None) -> None:
    s: Session | None = getattr(g, "db_session", None)
    if s is None:
        return
    g.db_session = None
    if exc is not None:
        s.rollback()
    s.close()


@contextmanager
def session_scope(app: Flask) -> Iterator[Session]:
    """Unit of work outside a request (seed scripts, tests). Commits on clean exit."""
    s: Session = app.extensions[SESSIONMAKER_KEY]()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
