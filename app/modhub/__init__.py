import logging
import os

from dotenv import load_dotenv
from flask import Flask, g, request

from app.modhub.admin import bp as admin_bp
from app.modhub.auth import bp as auth_bp, load_current_user, refresh_session_cookie
from app.modhub.config import load_config
from app.modhub.db import ENGINE_KEY, init_db, teardown_db_session
from app.modhub.errors import register_error_handlers
from app.modhub.logs import configure_logging, register_request_logging
from app.modhub.modules.catalog.routes import bp as catalog_bp
from app.modhub.modules.collections.routes import bp as collections_bp
from app.modhub.modules.mods.routes import bp as mods_bp
from app.modhub.modules.uploads.routes import bp as uploads_bp
from app.modhub.routes import bp as routes_bp
from app.modhub.storage import S3Storage, storage_from_config, validate_storage_config

_PRODUCTION = ("prod", "production")


def _refuse_unsafe_production_config(app: Flask) -> None:
    db_url = str(app.config.get("DATABASE_URL") or "").strip()
    if not db_url:
        raise RuntimeError("No database configured; set DATABASE_URI for production.")
    if db_url.startswith("sqlite"):
        raise RuntimeError("Production runs on Postgres; DATABASE_URI points at SQLite.")
    if str(app.config.get("SECRET_KEY") or "") in ("", "change-me"):
        raise RuntimeError("SECRET_KEY is unset or still the placeholder; session tokens would be forgeable.")


def _check_storage(app: Flask, production: bool) -> None:
    # misconfiguration is logged, not fatal: upload routes answer 503 until fixed
    validation = validate_storage_config(app.config)
    if not validation.is_valid:
        app.logger.error("Storage not configured, missing: %s", ", ".join(validation.missing_variables))
        return
    if not production or app.config.get("STORAGE_BACKEND") != "s3":
        return
    try:
        storage = storage_from_config(app.config)
        if isinstance(storage, S3Storage):
            storage._client().head_bucket(Bucket=storage.bucket)
            app.logger.info("Bucket '%s' reachable (%s)", storage.bucket, validation.endpoint_type)
    except Exception as e:
        app.logger.error("Bucket check failed: %s", e)


def create_app(overrides: dict | None = None) -> Flask:
    load_dotenv()
    app = Flask(__name__, template_folder="templates")
    app.config.from_mapping(load_config())
    if overrides:
        app.config.update(overrides)

    configure_logging(app)

    production = (app.config.get("ENV") or "").strip().lower() in _PRODUCTION
    if production:
        _refuse_unsafe_production_config(app)

    init_db(app)

    if hasattr(os, "register_at_fork"):
        # gunicorn --preload forks after the pool exists; children need their own sockets
        def _fresh_pool_in_child() -> None:
            engine = app.extensions.get(ENGINE_KEY)
            if engine is not None:
                engine.dispose(close=False)

        os.register_at_fork(after_in_child=_fresh_pool_in_child)

    _check_storage(app, production)

    app.register_blueprint(routes_bp)
    for api_bp in (auth_bp, catalog_bp, mods_bp, collections_bp, uploads_bp):
        app.register_blueprint(api_bp, url_prefix="/api")
    app.register_blueprint(admin_bp, url_prefix="/api/admin")

    register_request_logging(app)

    def _identify_user():
        if request.path in ("/health", "/healthz"):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_identify_user)
    app.after_request(refresh_session_cookie)
    app.teardown_appcontext(teardown_db_session)

    register_error_handlers(app)

    logging.getLogger(__name__).info("ModHub app created (env=%s)", app.config.get("ENV"))
    return app
