from flask import Blueprint, current_app

from app.modhub.storage import validate_storage_config

bp = Blueprint("routes", __name__)


@bp.get("/health")
def health():
    """Liveness plus the storage mode; never touches the database."""
    storage = validate_storage_config(current_app.config)
    return {
        "ok": True,
        "service": "modhub",
        "storage": {"configured": storage.is_valid, "type": storage.endpoint_type},
    }


@bp.get("/healthz")
def healthz():
    # load balancer probe
    return "ok", 200
