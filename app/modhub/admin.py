from flask import Blueprint, Response, current_app, g, jsonify, request
from sqlalchemy import desc, func, or_, select

from app.modhub.audit import record_event
from app.modhub.constants import ASSIGNABLE_ROLES, USER_ROLES
from app.modhub.db import db_session
from app.modhub.errors import ForbiddenError, NotFoundError, ValidationError
from app.modhub.models import SystemSettings, User
from app.modhub.modules.catalog.models import Category, Game
from app.modhub.modules.catalog.service import (
    create_game,
    delete_game,
    game_schema,
    get_game,
    set_game_schema,
    update_game,
)
from app.modhub.modules.form_schema.render import render_editor, render_preview
from app.modhub.modules.form_schema.schema import (
    append_field,
    index_of,
    move_field,
    parse_field,
    remove_field,
    update_field,
)
from app.modhub.modules.mods.models import Mod, ModStats
from app.modhub.modules.mods.service import (
    delete_mod,
    get_mod,
    recalculate_size,
    refresh_download_windows,
    set_mod_status,
    update_mod,
)
from app.modhub.rbac import require_role
from app.modhub.storage import storage_from_config, validate_storage_config
from app.modhub.utils import parse_int, utcnow

bp = Blueprint("admin", __name__)


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _page_args(payload: dict, *, default_limit: int = 50) -> tuple[int, int]:
    limit = parse_int(payload.get("limit"), default=default_limit) or default_limit
    offset = parse_int(payload.get("offset"), default=0) or 0
    return max(1, min(limit, 200)), max(0, offset)


def _admin_count(s) -> int:
    return int(s.scalar(select(func.count(User.id)).where(User.role == "admin")) or 0)


# --- users ----------------------------------------------------------------


@bp.post("/getUsers")
@require_role("admin")
def users_list():
    s = db_session()
    payload = _json_body()
    limit, offset = _page_args(payload)
    q = select(User)
    role = payload.get("role")
    if role:
        if role not in USER_ROLES:
            raise ValidationError("Invalid role filter", {"role": [f"Must be one of: {', '.join(USER_ROLES)}"]})
        q = q.where(User.role == role)
    search = (payload.get("search") or "").strip() if isinstance(payload.get("search"), str) else ""
    if search:
        like = f"%{search}%"
        q = q.where(or_(User.username.ilike(like), User.email.ilike(like)))
    total = s.scalar(select(func.count()).select_from(q.subquery())) or 0
    users = s.scalars(q.order_by(desc(User.created_at), desc(User.id)).limit(limit).offset(offset)).all()
    return jsonify({"users": [u.to_dict() for u in users], "total": int(total), "limit": limit, "offset": offset})


@bp.put("/users/<int:user_id>/role")
@require_role("admin")
def users_set_role(user_id: int):
    s = db_session()
    user = s.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    role = _json_body().get("role")
    if role not in ASSIGNABLE_ROLES:
        raise ValidationError("Invalid role", {"role": [f"Must be one of: {', '.join(ASSIGNABLE_ROLES)}"]})
    if user.role == "admin" and role != "admin" and _admin_count(s) <= 1:
        raise ValidationError("Cannot remove the last admin")

    old = user.role
    user.role = role
    user.updated_at = utcnow()
    record_event(
        s,
        actor=g.current_user,
        action="user.role",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"old": old, "new": role},
    )
    s.commit()
    return jsonify({"success": True, "user": user.to_dict()})


@bp.delete("/users/<int:user_id>")
@require_role("admin")
def users_delete(user_id: int):
    s = db_session()
    user = s.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    if user.id == g.current_user.id:
        raise ForbiddenError("You cannot delete your own account")
    if user.role == "admin" and _admin_count(s) <= 1:
        raise ValidationError("Cannot delete the last admin")
    if s.scalar(select(func.count(Mod.id)).where(Mod.author_id == user.id)):
        raise ValidationError("Cannot delete a user who still owns mods")

    record_event(
        s,
        actor=g.current_user,
        action="user.delete",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"username": user.username},
    )
    s.delete(user)
    s.commit()
    return jsonify({"success": True})


# --- mods -----------------------------------------------------------------


@bp.post("/getMods")
@require_role("admin")
def mods_list():
    s = db_session()
    payload = _json_body()
    limit, offset = _page_args(payload)
    q = select(Mod.id)
    search = (payload.get("search") or "").strip() if isinstance(payload.get("search"), str) else ""
    if search:
        q = q.where(Mod.title.ilike(f"%{search}%"))
    game_id = parse_int(payload.get("gameId"))
    if game_id:
        q = q.where(Mod.game_id == game_id)
    status = payload.get("status")
    if status == "active":
        q = q.where(Mod.is_active.is_(True))
    elif status == "inactive":
        q = q.where(Mod.is_active.is_(False))
    elif status == "featured":
        q = q.where(Mod.is_featured.is_(True))
    total = s.scalar(select(func.count()).select_from(q.subquery())) or 0
    ids = list(s.scalars(q.order_by(desc(Mod.created_at), desc(Mod.id)).limit(limit).offset(offset)))
    by_id = {m.id: m for m in s.scalars(select(Mod).where(Mod.id.in_(ids))).unique()} if ids else {}
    mods = [by_id[i].to_summary() for i in ids if i in by_id]
    return jsonify({"mods": mods, "total": int(total), "limit": limit, "offset": offset})


@bp.get("/mods/<int:mod_id>")
@require_role("admin")
def mods_get(mod_id: int):
    return jsonify({"mod": get_mod(db_session(), mod_id).to_detail()})


@bp.put("/mods/<int:mod_id>")
@require_role("admin")
def mods_update(mod_id: int):
    s = db_session()
    mod = update_mod(s, get_mod(s, mod_id), _json_body(), g.current_user)
    s.commit()
    return jsonify({"success": True, "mod": mod.to_detail()})


@bp.put("/mods/<int:mod_id>/status")
@require_role("admin")
def mods_status(mod_id: int):
    s = db_session()
    mod = set_mod_status(s, get_mod(s, mod_id), _json_body(), g.current_user)
    s.commit()
    return jsonify({"success": True, "isActive": mod.is_active, "isFeatured": mod.is_featured})


@bp.delete("/mods/<int:mod_id>")
@require_role("admin")
def mods_delete(mod_id: int):
    s = db_session()
    mod = get_mod(s, mod_id)
    storage = storage_from_config(current_app.config) if validate_storage_config(current_app.config).is_valid else None
    delete_mod(s, mod, g.current_user, storage)
    s.commit()
    return jsonify({"success": True})


@bp.post("/mods/<int:mod_id>/recalculate-size")
@require_role("admin")
def mods_recalculate_size(mod_id: int):
    s = db_session()
    mod = get_mod(s, mod_id)
    size = recalculate_size(s, mod)
    s.commit()
    return jsonify({"success": True, "modId": mod.id, "newSize": size, "message": f"Mod size recalculated: {size}"})


# --- games ----------------------------------------------------------------


@bp.get("/getGames")
@require_role("admin")
def games_list():
    s = db_session()
    games = s.scalars(select(Game).order_by(Game.name.asc())).all()
    counts = dict(s.execute(select(Mod.game_id, func.count(Mod.id)).group_by(Mod.game_id)).all())
    out = []
    for game in games:
        d = game.to_dict(admin=True)
        d["modCount"] = int(counts.get(game.id, 0))
        out.append(d)
    return jsonify({"games": out})


@bp.post("/games")
@require_role("admin")
def games_create():
    s = db_session()
    game = create_game(s, _json_body(), g.current_user)
    s.commit()
    return jsonify({"success": True, "game": game.to_dict(admin=True)}), 201


@bp.put("/games/<int:game_id>")
@require_role("admin")
def games_update(game_id: int):
    s = db_session()
    game = update_game(s, get_game(s, game_id), _json_body(), g.current_user)
    s.commit()
    return jsonify({"success": True, "game": game.to_dict(admin=True)})


@bp.delete("/games/<int:game_id>")
@require_role("admin")
def games_delete(game_id: int):
    s = db_session()
    deleted = delete_game(s, get_game(s, game_id), g.current_user)
    s.commit()
    return jsonify({"success": True, "deleted": deleted})


# --- form schema ----------------------------------------------------------


def _schema_response(game: Game):
    return jsonify({"formSchema": game.to_dict(admin=True)["formSchema"]})


def _field_index(schema, field_id: str) -> int:
    i = index_of(schema, field_id)
    if i < 0:
        raise NotFoundError("Field not found")
    return i


@bp.post("/games/<int:game_id>/form-schema/fields")
@require_role("admin")
def schema_add_field(game_id: int):
    s = db_session()
    game = get_game(s, game_id)
    field_type = _json_body().get("type")
    set_game_schema(s, game, append_field(game_schema(game), field_type), g.current_user)
    s.commit()
    return _schema_response(game), 201


@bp.put("/games/<int:game_id>/form-schema/fields/<field_id>")
@require_role("admin")
def schema_update_field(game_id: int, field_id: str):
    s = db_session()
    game = get_game(s, game_id)
    schema = game_schema(game)
    i = _field_index(schema, field_id)
    # partial updates: unspecified keys keep their current values
    field, errs = parse_field({**schema[i].to_dict(), **_json_body(), "id": field_id}, position=i)
    if errs or field is None:
        raise ValidationError("Invalid field", {"field": errs})
    set_game_schema(s, game, update_field(schema, i, field), g.current_user)
    s.commit()
    return _schema_response(game)


@bp.delete("/games/<int:game_id>/form-schema/fields/<field_id>")
@require_role("admin")
def schema_remove_field(game_id: int, field_id: str):
    s = db_session()
    game = get_game(s, game_id)
    schema = game_schema(game)
    set_game_schema(s, game, remove_field(schema, _field_index(schema, field_id)), g.current_user)
    s.commit()
    return _schema_response(game)


@bp.post("/games/<int:game_id>/form-schema/fields/<field_id>/move")
@require_role("admin")
def schema_move_field(game_id: int, field_id: str):
    s = db_session()
    game = get_game(s, game_id)
    schema = game_schema(game)
    direction = _json_body().get("direction")
    set_game_schema(s, game, move_field(schema, _field_index(schema, field_id), direction), g.current_user)
    s.commit()
    return _schema_response(game)


@bp.get("/games/<int:game_id>/form-schema/editor")
@require_role("admin")
def schema_editor(game_id: int):
    game = get_game(db_session(), game_id)
    return Response(render_editor(game_schema(game)), mimetype="text/html")


@bp.get("/games/<int:game_id>/form-schema/preview")
@require_role("admin")
def schema_preview(game_id: int):
    game = get_game(db_session(), game_id)
    return Response(render_preview(game_schema(game)), mimetype="text/html")


# --- settings / health / system -------------------------------------------


@bp.get("/settings")
@require_role("admin")
def settings_get():
    s = db_session()
    settings = SystemSettings.load(s)
    s.commit()
    return jsonify({"settings": settings.to_dict()})


@bp.post("/settings")
@require_role("admin")
def settings_update():
    s = db_session()
    payload = _json_body()
    settings = SystemSettings.load(s)
    errors: dict[str, list[str]] = {}
    changes: dict[str, object] = {}
    for key, attr in (
        ("maxModFileSize", "max_mod_file_size"),
        ("maxImagesPerMod", "max_images_per_mod"),
        ("maxTotalImageSize", "max_total_image_size"),
    ):
        if key not in payload:
            continue
        value = parse_int(payload.get(key))
        if value is None or value < 1:
            errors[key] = ["Must be a positive integer"]
            continue
        if value != getattr(settings, attr):
            changes[key] = {"old": getattr(settings, attr), "new": value}
            setattr(settings, attr, value)
    if errors:
        raise ValidationError("Invalid settings", errors)
    settings.updated_at = utcnow()
    record_event(s, actor=g.current_user, action="settings.update", entity_type="SystemSettings", entity_id="1", metadata=changes)
    s.commit()
    return jsonify({"success": True, "settings": settings.to_dict()})


@bp.get("/health")
@require_role("admin")
def health():
    s = db_session()
    storage = validate_storage_config(current_app.config)
    mod_count = int(s.scalar(select(func.count(Mod.id))) or 0)
    user_count = int(s.scalar(select(func.count(User.id))) or 0)

    score = 100
    issues: list[str] = []
    if not storage.is_valid:
        score -= 30
        issues.append("Storage is not configured")
    if mod_count == 0:
        score -= 10
        issues.append("No mods have been uploaded")
    if user_count == 0:
        score -= 10
        issues.append("No users are registered")

    if score > 80:
        status = "excellent"
    elif score > 60:
        status = "good"
    elif score > 40:
        status = "fair"
    else:
        status = "poor"
    return jsonify(
        {
            "score": score,
            "status": status,
            "issues": issues,
            "checks": {
                "database": True,
                "storage": {
                    "configured": storage.is_valid,
                    "endpointType": storage.endpoint_type,
                    "missingVariables": storage.missing_variables,
                },
                "mods": mod_count,
                "users": user_count,
            },
        }
    )


@bp.get("/system")
@require_role("admin")
def system_info():
    s = db_session()
    storage = validate_storage_config(current_app.config)
    return jsonify(
        {
            "env": current_app.config.get("ENV"),
            "storageBackend": current_app.config.get("STORAGE_BACKEND"),
            "storageConfigured": storage.is_valid,
            "endpointType": storage.endpoint_type,
            "databaseDialect": s.get_bind().dialect.name,
            "actions": ["clear-cache", "refresh-stats"],
        }
    )


@bp.post("/system")
@require_role("admin")
def system_action():
    s = db_session()
    action = _json_body().get("action")
    if action == "clear-cache":
        # Nothing is cached server-side; only the identity map of this session.
        s.expire_all()
        message = "Cache cleared"
        details: dict = {}
    elif action == "refresh-stats":
        touched = refresh_download_windows(s)
        message = f"Statistics refreshed for {touched} mod(s)"
        details = {"modsUpdated": touched}
    else:
        raise ValidationError("Unknown action", {"action": ["Must be 'clear-cache' or 'refresh-stats'"]})
    record_event(s, actor=g.current_user, action=f"system.{action}", metadata=details or None)
    s.commit()
    current_app.logger.info("Admin system action %s by user_id=%s", action, g.current_user.id)
    return jsonify({"success": True, "action": action, "message": message, **details})


@bp.get("/stats")
@require_role("admin")
def stats():
    s = db_session()
    return jsonify(
        {
            "users": int(s.scalar(select(func.count(User.id))) or 0),
            "mods": int(s.scalar(select(func.count(Mod.id))) or 0),
            "activeMods": int(s.scalar(select(func.count(Mod.id)).where(Mod.is_active.is_(True))) or 0),
            "featuredMods": int(s.scalar(select(func.count(Mod.id)).where(Mod.is_featured.is_(True))) or 0),
            "games": int(s.scalar(select(func.count(Game.id))) or 0),
            "categories": int(s.scalar(select(func.count(Category.id))) or 0),
            "totalDownloads": int(s.scalar(select(func.coalesce(func.sum(ModStats.total_downloads), 0))) or 0),
        }
    )
