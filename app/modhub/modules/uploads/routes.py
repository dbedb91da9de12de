import mimetypes

from flask import Blueprint, current_app, g, jsonify, request, send_file

from app.modhub.db import db_session
from app.modhub.errors import ForbiddenError, NotFoundError, ValidationError
from app.modhub.modules.uploads.service import (
    UploadRejected,
    finalize_upload,
    request_presigned_upload,
    require_storage_configured,
    storage_status,
    upload_direct,
    upload_image,
    upload_mod_file,
)
from app.modhub.rbac import require_login
from app.modhub.storage import LocalStorage, StorageError, storage_from_config
from app.modhub.utils import parse_int

bp = Blueprint("uploads", __name__)


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _storage():
    require_storage_configured(current_app.config)
    return storage_from_config(current_app.config)


def _local_storage() -> LocalStorage:
    storage = storage_from_config(current_app.config)
    if not isinstance(storage, LocalStorage):
        raise NotFoundError()
    return storage


@bp.get("/upload")
def upload_info():
    return jsonify(
        {
            "message": "Upload endpoint is ready",
            "methods": ["POST"],
            "maxFileSize": "100MB",
            "storage": storage_status(current_app.config),
        }
    )


@bp.post("/upload")
@require_login
def upload_post():
    storage = _storage()
    user = g.current_user
    user_id = user.id
    requested = parse_int(request.form.get("userId"))
    if requested and user.is_admin:
        user_id = requested
    result = upload_direct(storage, request.files.get("file"), user_id=user_id)
    current_app.logger.info("Direct upload key=%s bytes=%s", result["fileKey"], result["fileSize"])
    return jsonify(result)


@bp.post("/upload/image")
@require_login
def upload_image_post():
    storage = _storage()
    s = db_session()
    result = upload_image(s, storage, request.files.get("file"), g.current_user)
    s.commit()
    return jsonify(result)


@bp.post("/upload/mod-file")
@require_login
def upload_mod_file_post():
    storage = _storage()
    result = upload_mod_file(storage, request.files.get("file"), g.current_user, mod_id=parse_int(request.form.get("modId")))
    return jsonify(result)


@bp.post("/upload/presigned-url")
@require_login
def presigned_url():
    storage = _storage()
    s = db_session()
    result = request_presigned_upload(
        s,
        storage,
        _json_body(),
        g.current_user,
        expires_in=int(current_app.config.get("PRESIGNED_URL_EXPIRES") or 3600),
    )
    s.commit()
    return jsonify(result)


@bp.post("/upload/finalize")
@require_login
def finalize():
    storage = _storage()
    s = db_session()
    try:
        result = finalize_upload(s, storage, _json_body(), g.current_user)
    except UploadRejected:
        s.commit()
        raise
    s.commit()
    return jsonify(result)


@bp.get("/storage/status")
def status():
    return jsonify(storage_status(current_app.config))


# --- local backend: presigned PUT/GET targets ------------------------------


@bp.put("/storage/local/put/<token>")
def local_put(token: str):
    storage = _local_storage()
    try:
        data = storage.verify(token, "put")
    except StorageError as e:
        raise ForbiddenError(str(e)) from e
    expected_ct = data.get("ct")
    if expected_ct and (request.content_type or "").split(";")[0].strip() != expected_ct:
        raise ValidationError("Content-Type does not match the signed upload")
    storage.put_bytes(data["key"], request.get_data(), content_type=expected_ct)
    return "", 200


@bp.get("/storage/local/get/<token>")
def local_get(token: str):
    storage = _local_storage()
    try:
        data = storage.verify(token, "get")
    except StorageError as e:
        raise ForbiddenError(str(e)) from e
    return _send(storage, data["key"])


@bp.get("/storage/local/files/<path:key>")
def local_file(key: str):
    return _send(_local_storage(), key)


def _send(storage: LocalStorage, key: str):
    try:
        fh = storage.open(key)
    except StorageError as e:
        raise NotFoundError("File not found") from e
    mimetype = mimetypes.guess_type(key)[0] or "application/octet-stream"
    return send_file(fh, mimetype=mimetype, download_name=key.rsplit("/", 1)[-1])
