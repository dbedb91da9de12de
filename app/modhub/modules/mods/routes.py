from flask import Blueprint, g, jsonify, request

from app.modhub.db import db_session
from app.modhub.modules.mods.service import (
    create_mod,
    get_visible_mod,
    get_visible_mod_by_slug,
    list_author_mods,
    list_featured_mods,
    list_mods,
    rate_mod,
    record_download,
    record_view,
    toggle_like,
)
from app.modhub.rbac import require_login
from app.modhub.utils import clamp_pagination, page_info, parse_int

bp = Blueprint("mods", __name__)


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


@bp.get("/mods")
def mods_list():
    s = db_session()
    page, limit, offset = clamp_pagination(request.args.get("page"), request.args.get("limit"))
    mods, total = list_mods(
        s,
        limit=limit,
        offset=offset,
        game_slug=(request.args.get("game") or request.args.get("gameSlug") or "").strip() or None,
        category=(request.args.get("category") or "").strip() or None,
        search=(request.args.get("search") or request.args.get("q") or "").strip() or None,
        sort_by=(request.args.get("sortBy") or "created").strip(),
        sort_order=(request.args.get("sortOrder") or "desc").strip().lower(),
    )
    return jsonify({"mods": [m.to_summary() for m in mods], "pagination": page_info(page, limit, total)})


@bp.post("/mods")
@require_login
def mods_create():
    s = db_session()
    mod = create_mod(s, _json_body(), g.current_user)
    s.commit()
    return (
        jsonify(
            {
                "message": "Mod created successfully. Now upload your files.",
                "success": True,
                "modId": mod.id,
                "gameSlug": mod.game.slug,
                "mod": mod.to_detail(),
            }
        ),
        201,
    )


@bp.get("/mods/<int:mod_id>")
def mods_detail(mod_id: int):
    s = db_session()
    mod = get_visible_mod(s, mod_id, g.current_user)
    record_view(s, mod)
    s.commit()
    return jsonify(mod.to_detail())


@bp.get("/mods/slug/<slug>")
def mods_detail_by_slug(slug: str):
    s = db_session()
    mod = get_visible_mod_by_slug(s, slug.strip(), g.current_user)
    record_view(s, mod)
    s.commit()
    return jsonify(mod.to_detail())


@bp.get("/featured-mods")
def featured_mods():
    s = db_session()
    limit = max(1, min(parse_int(request.args.get("limit"), default=4) or 4, 20))
    return jsonify({"mods": [m.to_summary() for m in list_featured_mods(s, limit=limit)]})


@bp.post("/mods/<int:mod_id>/like")
@require_login
def mods_like(mod_id: int):
    s = db_session()
    mod = get_visible_mod(s, mod_id, g.current_user)
    liked, likes = toggle_like(s, mod, g.current_user)
    s.commit()
    return jsonify({"liked": liked, "likes": likes})


@bp.post("/mods/<int:mod_id>/rating")
@require_login
def mods_rate(mod_id: int):
    s = db_session()
    payload = _json_body()
    mod = get_visible_mod(s, mod_id, g.current_user)
    stats = rate_mod(s, mod, g.current_user, payload.get("rating"), payload.get("review"))
    s.commit()
    return jsonify({"rating": stats.rating, "ratingCount": stats.rating_count})


@bp.post("/mods/<int:mod_id>/download")
def mods_download(mod_id: int):
    s = db_session()
    payload = _json_body()
    mod = get_visible_mod(s, mod_id, g.current_user)
    url = record_download(
        s,
        mod,
        g.current_user,
        file_id=parse_int(payload.get("fileId")),
        ip_address=request.remote_addr,
        user_agent=request.headers.get("User-Agent"),
    )
    s.commit()
    return jsonify({"downloadUrl": url, "totalDownloads": mod.stats.total_downloads if mod.stats else 0})


@bp.get("/authors/<username>/mods")
def author_mods(username: str):
    s = db_session()
    page, limit, offset = clamp_pagination(request.args.get("page"), request.args.get("limit"))
    author, mods, total = list_author_mods(
        s,
        username,
        limit=limit,
        offset=offset,
        game_slug=(request.args.get("game") or "").strip() or None,
    )
    return jsonify(
        {
            "author": author.to_public_dict(),
            "mods": [m.to_summary() for m in mods],
            "pagination": page_info(page, limit, total),
        }
    )
