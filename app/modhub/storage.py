from __future__ import annotations

import logging
import os
import re
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError
from itsdangerous import BadSignature, URLSafeTimedSerializer

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    pass


@dataclass(frozen=True)
class StorageValidation:
    is_valid: bool
    endpoint_type: str
    missing_variables: list[str] = field(default_factory=list)


def is_r2_endpoint(endpoint: str | None) -> bool:
    e = (endpoint or "").lower()
    return "cloudflare" in e or "r2.cloudflarestorage.com" in e


def endpoint_type(endpoint: str | None) -> str:
    if not endpoint:
        return "AWS S3 (default)"
    if is_r2_endpoint(endpoint):
        return "Cloudflare R2"
    if "amazonaws.com" in endpoint:
        return "AWS S3"
    return "Custom S3-compatible"


def validate_storage_config(config: dict) -> StorageValidation:
    """
    Reports which variables are missing for the configured backend.
    Local storage is always considered configured.
    """
    backend = (config.get("STORAGE_BACKEND") or "local").strip().lower()
    if backend != "s3":
        return StorageValidation(is_valid=True, endpoint_type="Local filesystem")

    endpoint = (config.get("S3_ENDPOINT") or "").strip()
    missing: list[str] = []
    if not (config.get("S3_BUCKET") or "").strip():
        missing.append("S3_BUCKET_NAME")
    # Non-AWS endpoints have no ambient credential chain.
    if endpoint and (is_r2_endpoint(endpoint) or "amazonaws.com" not in endpoint):
        if not config.get("S3_ACCESS_KEY_ID"):
            missing.append("S3_ACCESS_KEY_ID")
        if not config.get("S3_SECRET_ACCESS_KEY"):
            missing.append("S3_SECRET_ACCESS_KEY")
    return StorageValidation(is_valid=not missing, endpoint_type=endpoint_type(endpoint), missing_variables=missing)


def generate_file_key(original_name: str, user_id: int | str | None = None, *, now_ms: int | None = None) -> str:
    """users/<userId>/<timestamp>-<random>-<basename>.<ext> (or uploads/... when anonymous)."""
    ts = now_ms if now_ms is not None else int(time.time() * 1000)
    rand = secrets.token_hex(6)
    name = original_name or "file"
    base, _, ext = name.rpartition(".")
    if not base:
        base, ext = name, ""
    base = re.sub(r"[^a-zA-Z0-9_-]", "-", base)
    ext = re.sub(r"[^a-zA-Z0-9_-]", "-", ext)
    prefix = f"users/{user_id}" if user_id else "uploads"
    key = f"{prefix}/{ts}-{rand}-{base}"
    return f"{key}.{ext}" if ext else key


def image_key(user_id: int, file_name: str, *, now_ms: int | None = None) -> str:
    ts = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"images/{user_id}_{ts}_{file_name}"


def presigned_record_key(file_type: str, game_slug: str, mod_id: int, record_id: int, file_name: str) -> str:
    prefix = "images" if file_type == "image" else "mods"
    return f"{prefix}/{game_slug}/{mod_id}/{record_id}_{file_name}"


class Storage:
    backend = "base"

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        raise NotImplementedError

    def open(self, key: str) -> BinaryIO:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def presign_put(self, key: str, content_type: str, expires_in: int = 3600) -> str:
        raise NotImplementedError

    def presign_get(self, key: str, expires_in: int = 3600) -> str:
        raise NotImplementedError

    def public_url(self, key: str) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class LocalStorage(Storage):
    """
    Filesystem backend for development and tests. Presigned URLs point back at the
    app (see uploads.routes) and carry an itsdangerous token instead of an AWS signature.
    """

    root: Path
    secret_key: str = "change-me"
    url_prefix: str = "/api/storage/local"
    backend = "local"

    def _path(self, key: str) -> Path:
        safe_key = key.lstrip("/").replace("\\", "/")
        p = (self.root / safe_key).resolve()
        if self.root.resolve() not in p.parents:
            raise StorageError(f"Invalid storage key: {key}")
        return p

    def _serializer(self) -> URLSafeTimedSerializer:
        return URLSafeTimedSerializer(self.secret_key, salt="modhub.local-storage")

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        p = self._path(key)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(data)
        logger.debug("local put key=%s bytes=%s", key, len(data))

    def open(self, key: str) -> BinaryIO:
        p = self._path(key)
        if not p.exists():
            raise StorageError(f"Not found: {key}")
        return p.open("rb")

    def exists(self, key: str) -> bool:
        return self._path(key).exists()

    def delete(self, key: str) -> None:
        p = self._path(key)
        if p.exists():
            p.unlink()
        logger.debug("local delete key=%s", key)

    def sign(self, op: str, key: str, expires_in: int, content_type: str | None = None) -> str:
        return self._serializer().dumps({"op": op, "key": key, "exp": int(expires_in), "ct": content_type})

    def verify(self, token: str, op: str) -> dict:
        """Returns the token payload, raising StorageError when invalid, expired or for another op."""
        try:
            data, signed_at = self._serializer().loads(token, return_timestamp=True)
        except BadSignature as e:
            raise StorageError("Invalid upload token") from e
        if not isinstance(data, dict) or data.get("op") != op:
            raise StorageError("Invalid upload token")
        age = (datetime.now(timezone.utc) - signed_at).total_seconds()
        if age > int(data.get("exp") or 0):
            raise StorageError("Upload token expired")
        return data

    def presign_put(self, key: str, content_type: str, expires_in: int = 3600) -> str:
        return f"{self.url_prefix}/put/{self.sign('put', key, expires_in, content_type)}"

    def presign_get(self, key: str, expires_in: int = 3600) -> str:
        return f"{self.url_prefix}/get/{self.sign('get', key, expires_in)}"

    def public_url(self, key: str) -> str:
        return f"{self.url_prefix}/files/{key.lstrip('/')}"


@dataclass(frozen=True)
class S3Storage(Storage):
    endpoint: str
    region: str
    bucket: str
    access_key_id: str
    secret_access_key: str
    backend = "s3"

    @property
    def endpoint_url(self) -> str | None:
        if not self.endpoint:
            return None
        if self.endpoint.startswith(("http://", "https://")):
            return self.endpoint.rstrip("/")
        return f"https://{self.endpoint.rstrip('/')}"

    def _client(self):
        s3_opts: dict[str, str] = {}
        if is_r2_endpoint(self.endpoint):
            s3_opts["addressing_style"] = "path"
        cfg = Config(
            signature_version="s3v4",
            connect_timeout=5,
            read_timeout=60,
            retries={"max_attempts": 1, "mode": "standard"},
            s3=s3_opts or None,
        )
        kwargs: dict[str, object] = {
            "endpoint_url": self.endpoint_url,
            "region_name": self.region or None,
            "config": cfg,
        }
        if self.access_key_id and self.secret_access_key:
            kwargs["aws_access_key_id"] = self.access_key_id
            kwargs["aws_secret_access_key"] = self.secret_access_key
        return boto3.client("s3", **kwargs)

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        logger.debug("s3 put bucket=%s key=%s bytes=%s", self.bucket, key, len(data))
        self._client().put_object(
            Bucket=self.bucket,
            Key=key,
            Body=data,
            ContentType=content_type or "application/octet-stream",
        )

    def open(self, key: str) -> BinaryIO:
        obj = self._client().get_object(Bucket=self.bucket, Key=key)
        return obj["Body"]  # type: ignore[return-value]

    def exists(self, key: str) -> bool:
        try:
            self._client().head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in ("404", "NotFound", "NoSuchKey"):
                return False
            raise

    def delete(self, key: str) -> None:
        logger.debug("s3 delete bucket=%s key=%s", self.bucket, key)
        self._client().delete_object(Bucket=self.bucket, Key=key)

    def presign_put(self, key: str, content_type: str, expires_in: int = 3600) -> str:
        return self._client().generate_presigned_url(
            "put_object",
            Params={"Bucket": self.bucket, "Key": key, "ContentType": content_type},
            ExpiresIn=int(expires_in),
        )

    def presign_get(self, key: str, expires_in: int = 3600) -> str:
        return self._client().generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=int(expires_in),
        )

    def public_url(self, key: str) -> str:
        if self.endpoint_url:
            return f"{self.endpoint_url}/{self.bucket}/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"


def storage_from_config(config: dict) -> Storage:
    backend = (config.get("STORAGE_BACKEND") or "local").strip().lower()
    if backend == "s3":
        return S3Storage(
            endpoint=(config.get("S3_ENDPOINT") or "").strip(),
            region=(config.get("S3_REGION") or "auto").strip(),
            bucket=(config.get("S3_BUCKET") or "").strip(),
            access_key_id=(config.get("S3_ACCESS_KEY_ID") or "").strip(),
            secret_access_key=(config.get("S3_SECRET_ACCESS_KEY") or "").strip(),
        )
    # default local
    root_setting = (config.get("LOCAL_STORAGE_ROOT") or "").strip()
    root = Path(root_setting) if root_setting else Path(os.getcwd()) / "storage"
    return LocalStorage(root=root, secret_key=str(config.get("SECRET_KEY") or "change-me"))
