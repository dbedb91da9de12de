from flask import Blueprint, g, jsonify, request

from app.modhub.db import db_session
from app.modhub.errors import ValidationError
from app.modhub.modules.collections.service import (
    add_mod,
    collection_detail,
    create_collection,
    delete_collection,
    get_owned_collection,
    get_viewable_collection,
    list_public_collections,
    list_user_collections,
    remove_mod,
    reorder_mods,
    update_collection,
)
from app.modhub.rbac import require_login
from app.modhub.utils import clamp_pagination, page_info

bp = Blueprint("collections", __name__)


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


@bp.get("/collections")
def public_collections():
    s = db_session()
    page, limit, offset = clamp_pagination(request.args.get("page"), request.args.get("limit"))
    rows, total = list_public_collections(s, limit=limit, offset=offset)
    return jsonify({"collections": [c.to_dict() for c in rows], "pagination": page_info(page, limit, total)})


@bp.get("/collections/<int:collection_id>")
def collection_view(collection_id: int):
    s = db_session()
    c = get_viewable_collection(s, collection_id, g.current_user)
    return jsonify(collection_detail(c, g.current_user))


@bp.get("/user/collections")
@require_login
def my_collections():
    s = db_session()
    return jsonify({"collections": [c.to_dict() for c in list_user_collections(s, g.current_user)]})


@bp.post("/user/collections")
@require_login
def my_collections_create():
    s = db_session()
    c = create_collection(s, _json_body(), g.current_user)
    s.commit()
    return jsonify({"collection": c.to_dict()}), 201


@bp.put("/user/collections/<int:collection_id>")
@require_login
def my_collections_update(collection_id: int):
    s = db_session()
    c = get_owned_collection(s, collection_id, g.current_user)
    update_collection(s, c, _json_body(), g.current_user)
    s.commit()
    return jsonify({"collection": c.to_dict()})


@bp.delete("/user/collections/<int:collection_id>")
@require_login
def my_collections_delete(collection_id: int):
    s = db_session()
    c = get_owned_collection(s, collection_id, g.current_user)
    delete_collection(s, c, g.current_user)
    s.commit()
    return jsonify({"success": True})


def _collection_and_mod(payload: dict):
    if not payload.get("collectionId") or not payload.get("modId"):
        raise ValidationError("Collection ID and Mod ID are required")
    return get_owned_collection(db_session(), payload["collectionId"], g.current_user), payload["modId"]


@bp.post("/user/collections/mods")
@require_login
def my_collection_add_mod():
    s = db_session()
    c, mod_id = _collection_and_mod(_json_body())
    add_mod(s, c, mod_id, g.current_user)
    s.commit()
    return jsonify({"success": True})


@bp.delete("/user/collections/mods")
@require_login
def my_collection_remove_mod():
    s = db_session()
    c, mod_id = _collection_and_mod(_json_body())
    remove_mod(s, c, mod_id)
    s.commit()
    return jsonify({"success": True})


@bp.put("/user/collections/mods")
@require_login
def my_collection_reorder():
    s = db_session()
    payload = _json_body()
    if not payload.get("collectionId") or not isinstance(payload.get("order"), list):
        raise ValidationError("Collection ID and order array are required")
    c = get_owned_collection(s, payload["collectionId"], g.current_user)
    reorder_mods(s, c, payload["order"])
    s.commit()
    return jsonify({"success": True})
