import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    log_level: str

    storage_backend: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str


def _getenv(*names: str, default: str = "") -> str:
    """First non-empty value among `names` (aliases are checked in order)."""
    for name in names:
        value = (os.environ.get(name) or "").strip()
        if value:
            return value
    return default


def load_settings() -> Settings:
    bucket = _getenv("S3_BUCKET_NAME")
    return Settings(
        secret_key=_getenv("SECRET_KEY", default="change-me"),
        env=_getenv("ENV", default="development"),
        database_url=_getenv("DATABASE_URI", "DATABASE_URL", default="sqlite:///modhub.db"),
        log_level=_getenv("LOG_LEVEL", default="info"),
        # Default to S3 only when a bucket is configured.
        storage_backend=_getenv("STORAGE_BACKEND", default="s3" if bucket else "local").lower(),
        s3_endpoint=_getenv("S3_ENDPOINT", "ENDPOINT"),
        s3_region=_getenv("S3_REGION", "AWS_REGION", default="auto"),
        s3_bucket=bucket,
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", "AWS_ACCESS_KEY_ID"),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", "AWS_SECRET_ACCESS_KEY"),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "LOG_LEVEL": s.log_level,
        "STORAGE_BACKEND": s.storage_backend,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        "LOCAL_STORAGE_ROOT": _getenv("LOCAL_STORAGE_ROOT"),
        # pool sizing
        "DB_POOL_SIZE": 10,
        "DB_CONNECT_TIMEOUT": 10,
        "DB_POOL_RECYCLE": 1800,
        # auth cookie ("session" holds the raw session token)
        "AUTH_COOKIE_NAME": "session",
        "AUTH_COOKIE_SECURE": is_production,
        # Flask's own signed cookie must not collide with the auth cookie.
        "SESSION_COOKIE_NAME": "modhub_state",
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,
        # proxied uploads cap (mod files may be up to 500MB)
        "MAX_CONTENT_LENGTH": 512 * 1024 * 1024,
        "PRESIGNED_URL_EXPIRES": 3600,
    }
