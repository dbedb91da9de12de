from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import func, select
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from app.modhub.audit import record_event
from app.modhub.constants import (
    IMAGE_CONTENT_TYPES,
    MAX_DIRECT_UPLOAD_BYTES,
    MAX_MOD_FILE_BYTES,
    MOD_FILE_EXTENSIONS,
    UPLOAD_FILE_TYPES,
)
from app.modhub.errors import ApiError, NotFoundError, ValidationError
from app.modhub.models import SystemSettings
from app.modhub.modules.mods.models import Mod, ModFile, ModImage
from app.modhub.modules.mods.service import DEFAULT_VERSION, get_mod, recalculate_size, require_mod_owner
from app.modhub.storage import (
    Storage,
    generate_file_key,
    image_key,
    presigned_record_key,
    validate_storage_config,
)
from app.modhub.utils import parse_int, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.modhub.models import User

logger = logging.getLogger(__name__)

MB = 1024 * 1024


def storage_status(config: dict) -> dict:
    v = validate_storage_config(config)
    d: dict = {"configured": v.is_valid, "endpointType": v.endpoint_type}
    if not v.is_valid:
        d["missingVariables"] = v.missing_variables
    return d


def require_storage_configured(config: dict) -> None:
    v = validate_storage_config(config)
    if not v.is_valid:
        raise ApiError(
            "Storage not configured",
            status_code=503,
            details={"endpointType": v.endpoint_type, "missingVariables": v.missing_variables},
        )


class UploadRejected(ValidationError):
    """
    Raised by finalize_upload after the pending record was deleted (flushed, not committed)
    and its object removed. Callers commit before re-raising so the record stays gone.
    """


def _reject(s: "Session", storage: Storage, record, key: str, message: str) -> None:
    s.delete(record)
    s.flush()
    try:
        storage.delete(key)
    except Exception as e:
        logger.warning("Failed to delete rejected upload key=%s: %s", key, e)
    raise UploadRejected(message)


def _clean_file_name(name) -> str:
    cleaned = secure_filename(name) if isinstance(name, str) else ""
    if not cleaned:
        raise ValidationError("Invalid file name", {"fileName": ["Invalid file name"]})
    return cleaned


# --- presigned flow -------------------------------------------------------


def request_presigned_upload(s: "Session", storage: Storage, payload: dict, user: "User", *, expires_in: int = 3600) -> dict:
    """
    Creates a pending image/file record for the mod and returns a presigned PUT URL
    for its storage key. The record gets its URL and size in finalize_upload.
    """
    game_slug = payload.get("gameSlug")
    mod_id = parse_int(payload.get("modId"))
    file_type = payload.get("fileType")
    content_type = payload.get("contentType")
    if not game_slug or not mod_id or not file_type or not payload.get("fileName") or not content_type:
        raise ValidationError("Missing required fields")
    if file_type not in UPLOAD_FILE_TYPES:
        raise ValidationError("fileType must be 'image' or 'mod'", {"fileType": ["Must be 'image' or 'mod'"]})
    file_name = _clean_file_name(payload.get("fileName"))

    mod = get_mod(s, mod_id)
    require_mod_owner(mod, user)
    if mod.game.slug != game_slug:
        raise ValidationError("gameSlug does not match the mod's game", {"gameSlug": ["Does not match mod"]})

    settings = SystemSettings.load(s)
    now = utcnow()
    record: ModImage | ModFile
    if file_type == "image":
        if not str(content_type).startswith("image/"):
            raise ValidationError("Images must have an image/* content type", {"contentType": ["Not an image"]})
        count = s.scalar(select(func.count(ModImage.id)).where(ModImage.mod_id == mod.id)) or 0
        if count >= settings.max_images_per_mod:
            raise ValidationError(f"A mod can have at most {settings.max_images_per_mod} images")
        record = ModImage(
            mod_id=mod.id,
            file_name=file_name,
            content_type=content_type,
            order=int(count),
            uploaded_by_user_id=user.id,
            created_at=now,
            updated_at=now,
        )
    else:
        version = (payload.get("version") or "").strip() if isinstance(payload.get("version"), str) else ""
        record = ModFile(
            mod_id=mod.id,
            file_name=file_name,
            content_type=content_type,
            version=version or DEFAULT_VERSION,
            uploaded_by_user_id=user.id,
            created_at=now,
            updated_at=now,
        )
    s.add(record)
    s.flush()

    key = presigned_record_key(file_type, game_slug, mod.id, record.id, file_name)
    url = storage.presign_put(key, content_type, expires_in)
    logger.info("Issued presigned %s upload mod_id=%s record_id=%s", file_type, mod.id, record.id)
    return {"presignedUrl": url, "recordId": record.id, "storageKey": key}


def finalize_upload(s: "Session", storage: Storage, payload: dict, user: "User") -> dict:
    record_id = parse_int(payload.get("recordId"))
    file_type = payload.get("fileType")
    storage_key = payload.get("storageKey")
    file_size = parse_int(payload.get("fileSize"))
    if not record_id or not file_type or not storage_key or not file_size:
        raise ValidationError("Missing required fields")
    if file_type not in UPLOAD_FILE_TYPES:
        raise ValidationError("fileType must be 'image' or 'mod'", {"fileType": ["Must be 'image' or 'mod'"]})

    model = ModImage if file_type == "image" else ModFile
    record = s.get(model, record_id)
    if record is None:
        raise NotFoundError("Upload record not found")
    mod: Mod = record.mod
    require_mod_owner(mod, user)

    expected = presigned_record_key(file_type, mod.game.slug, mod.id, record.id, record.file_name)
    if storage_key != expected:
        raise ValidationError("storageKey does not match the upload record", {"storageKey": ["Mismatch"]})
    if not storage.exists(storage_key):
        raise ValidationError("Uploaded object not found in storage", {"storageKey": ["Not uploaded"]})

    settings = SystemSettings.load(s)
    if isinstance(record, ModFile) and file_size > settings.max_mod_file_size * MB:
        _reject(s, storage, record, storage_key, f"File too large. Maximum size is {settings.max_mod_file_size}MB")
    if isinstance(record, ModImage):
        others = s.scalar(
            select(func.coalesce(func.sum(ModImage.file_size), 0)).where(ModImage.mod_id == mod.id, ModImage.id != record.id)
        ) or 0
        if others + file_size > settings.max_total_image_size * MB:
            _reject(s, storage, record, storage_key, f"Total image size exceeds {settings.max_total_image_size}MB")

    url = storage.public_url(storage_key)
    now = utcnow()
    record.storage_key = storage_key
    record.file_size = file_size
    record.updated_at = now

    if isinstance(record, ModImage):
        record.image_url = url
        has_main = any(i.is_main for i in mod.images if i.id != record.id)
        if not has_main:
            record.is_main = True
            if not mod.image_url:
                mod.image_url = url
    else:
        record.file_url = url
        has_main = any(f.is_main_file for f in mod.files if f.id != record.id)
        if not has_main:
            record.is_main_file = True
            if not mod.download_url:
                mod.download_url = url
        s.flush()
        recalculate_size(s, mod)
    mod.updated_at = now

    record_event(
        s,
        actor=user,
        action=f"upload.finalize.{file_type}",
        entity_type="Mod",
        entity_id=str(mod.id),
        metadata={"record_id": record.id, "key": storage_key, "size": file_size},
    )
    return {"success": True, "url": url}


# --- proxied uploads ------------------------------------------------------


def _read_upload(f: FileStorage | None, max_bytes: int) -> bytes:
    if f is None or not f.filename:
        raise ValidationError("No file provided", {"file": ["Required"]})
    data = f.read(max_bytes + 1)
    if len(data) > max_bytes:
        raise ValidationError(f"File too large. Maximum size is {max_bytes // MB}MB")
    return data


def _upload_result(storage: Storage, key: str, f: FileStorage, data: bytes, content_type: str) -> dict:
    storage.put_bytes(key, data, content_type=content_type)
    return {
        "success": True,
        "fileKey": key,
        "fileUrl": storage.public_url(key),
        "fileName": f.filename,
        "fileSize": len(data),
        "contentType": content_type,
    }


def upload_direct(storage: Storage, f: FileStorage | None, *, user_id: int | None) -> dict:
    data = _read_upload(f, MAX_DIRECT_UPLOAD_BYTES)
    key = generate_file_key(f.filename, user_id)
    return _upload_result(storage, key, f, data, f.mimetype or "application/octet-stream")


def upload_mod_file(storage: Storage, f: FileStorage | None, user: "User", *, mod_id=None) -> dict:
    data = _read_upload(f, MAX_MOD_FILE_BYTES)
    name = (f.filename or "").lower()
    ext = name[name.rfind("."):] if "." in name else ""
    if ext not in MOD_FILE_EXTENSIONS:
        raise ValidationError("Invalid file type. Allowed types: " + ", ".join(MOD_FILE_EXTENSIONS), {"file": ["Invalid type"]})
    key = generate_file_key(f.filename, user.id)
    result = _upload_result(storage, key, f, data, f.mimetype or "application/octet-stream")
    result["modId"] = mod_id
    return result


def upload_image(s: "Session", storage: Storage, f: FileStorage | None, user: "User") -> dict:
    settings = SystemSettings.load(s)
    max_bytes = settings.max_total_image_size * MB
    if f is not None and f.filename and (f.mimetype or "") not in IMAGE_CONTENT_TYPES:
        raise ValidationError(
            "Invalid image type. Allowed types: " + ", ".join(sorted(IMAGE_CONTENT_TYPES)),
            {"file": ["Invalid type"]},
        )
    data = _read_upload(f, max_bytes)
    key = image_key(user.id, _clean_file_name(f.filename))
    result = _upload_result(storage, key, f, data, f.mimetype)
    result["imageUrl"] = result["fileUrl"]
    return result
