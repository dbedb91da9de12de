from flask import Blueprint, jsonify, request

from app.modhub.db import db_session
from app.modhub.modules.catalog.service import get_game_by_slug, list_active_games, list_categories
from app.modhub.utils import clamp_pagination, page_info

bp = Blueprint("catalog", __name__)


@bp.get("/games")
def games_list():
    s = db_session()
    page, limit, offset = clamp_pagination(request.args.get("page"), request.args.get("limit"))
    games, total = list_active_games(s, limit=limit, offset=offset)
    return jsonify({"games": games, "pagination": page_info(page, limit, total)})


@bp.get("/games/<slug>")
def game_detail(slug: str):
    game = get_game_by_slug(db_session(), slug)
    return jsonify({"game": game.to_dict()})


@bp.get("/categories")
def categories_list():
    s = db_session()
    return jsonify({"categories": [c.to_dict() for c in list_categories(s)]})
