from __future__ import annotations

import re
from typing import TYPE_CHECKING

from sqlalchemy import func, select

from app.modhub.audit import record_event
from app.modhub.errors import ConflictError, NotFoundError, ValidationError
from app.modhub.modules.catalog.models import Category, Game
from app.modhub.modules.form_schema.schema import FormField, dump_schema, parse_schema
from app.modhub.utils import parse_bool, slugify, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.modhub.models import User

_URL_RE = re.compile(r"^https?://\S+$")


def list_active_games(s: "Session", *, limit: int, offset: int) -> tuple[list[dict], int]:
    """Active games by name with the number of active mods each."""
    from app.modhub.modules.mods.models import Mod

    total = s.scalar(select(func.count(Game.id)).where(Game.is_active.is_(True))) or 0
    mod_count = (
        select(func.count(Mod.id))
        .where(Mod.game_id == Game.id, Mod.is_active.is_(True))
        .correlate(Game)
        .scalar_subquery()
    )
    rows = s.execute(
        select(Game, mod_count.label("mod_count"))
        .where(Game.is_active.is_(True))
        .order_by(Game.name.asc())
        .limit(limit)
        .offset(offset)
    ).all()
    games = []
    for game, count in rows:
        d = game.to_dict()
        d.pop("formSchema", None)
        d["modCount"] = int(count or 0)
        games.append(d)
    return games, int(total)


def get_game_by_slug(s: "Session", slug: str) -> Game:
    """Public lookup; inactive games are reported as missing."""
    game = s.scalar(select(Game).where(Game.slug == slug))
    if game is None or not game.is_active:
        raise NotFoundError("Game not found")
    return game


def get_game(s: "Session", game_id: int) -> Game:
    game = s.get(Game, game_id)
    if game is None:
        raise NotFoundError("Game not found")
    return game


def list_categories(s: "Session") -> list[Category]:
    return list(s.scalars(select(Category).order_by(Category.name.asc())))


def game_schema(game: Game) -> list[FormField]:
    return parse_schema(game.form_schema or [])


def set_game_schema(s: "Session", game: Game, schema: list[FormField], user: "User | None") -> Game:
    game.form_schema = dump_schema(schema)
    game.updated_at = utcnow()
    record_event(
        s,
        actor=user,
        action="game.form_schema.update",
        entity_type="Game",
        entity_id=str(game.id),
        metadata={"field_count": len(schema)},
    )
    return game


def _validate_game_payload(payload: dict, *, partial: bool) -> dict[str, list[str]]:
    errors: dict[str, list[str]] = {}
    for key in ("name", "slug"):
        if key in payload or not partial:
            value = payload.get(key)
            if not isinstance(value, str) or not value.strip():
                errors[key] = [f"Game {key} is required"]
    image_url = payload.get("imageUrl")
    if image_url not in (None, "") and (not isinstance(image_url, str) or not _URL_RE.match(image_url)):
        errors["imageUrl"] = ["Must be a valid URL"]
    return errors


def _ensure_unique(s: "Session", *, name: str | None, slug: str | None, exclude_id: int | None = None) -> None:
    if name:
        q = select(Game.id).where(Game.name == name)
        if exclude_id:
            q = q.where(Game.id != exclude_id)
        if s.scalar(q):
            raise ConflictError("A game with this name already exists")
    if slug:
        q = select(Game.id).where(Game.slug == slug)
        if exclude_id:
            q = q.where(Game.id != exclude_id)
        if s.scalar(q):
            raise ConflictError("A game with this slug already exists")


def create_game(s: "Session", payload: dict, user: "User") -> Game:
    errors = _validate_game_payload(payload, partial=False)
    if errors:
        raise ValidationError("Invalid game", errors)
    schema = parse_schema(payload.get("formSchema") or [])
    name = payload["name"].strip()
    slug = slugify(payload["slug"])
    if not slug:
        raise ValidationError("Invalid game", {"slug": ["Game slug is required"]})
    _ensure_unique(s, name=name, slug=slug)

    now = utcnow()
    vis_users = parse_bool(payload.get("visibleToUsers"))
    vis_supporters = parse_bool(payload.get("visibleToSupporters"))
    game = Game(
        name=name,
        slug=slug,
        description=(payload.get("description") or "").strip() or None,
        image_url=(payload.get("imageUrl") or "").strip() or None,
        is_active=True,
        visible_to_users=True if vis_users is None else vis_users,
        visible_to_supporters=True if vis_supporters is None else vis_supporters,
        form_schema=dump_schema(schema),
        created_at=now,
        updated_at=now,
    )
    s.add(game)
    s.flush()
    record_event(s, actor=user, action="game.create", entity_type="Game", entity_id=str(game.id), metadata={"slug": slug})
    return game


def update_game(s: "Session", game: Game, payload: dict, user: "User") -> Game:
    errors = _validate_game_payload(payload, partial=True)
    if errors:
        raise ValidationError("Invalid game", errors)

    changes: dict[str, object] = {}
    if "name" in payload:
        name = payload["name"].strip()
        if name != game.name:
            _ensure_unique(s, name=name, slug=None, exclude_id=game.id)
            changes["name"] = {"old": game.name, "new": name}
            game.name = name
    if "slug" in payload:
        slug = slugify(payload["slug"])
        if slug != game.slug:
            _ensure_unique(s, name=None, slug=slug, exclude_id=game.id)
            changes["slug"] = {"old": game.slug, "new": slug}
            game.slug = slug
    if "description" in payload:
        game.description = (payload.get("description") or "").strip() or None
        changes["description"] = True
    if "imageUrl" in payload:
        game.image_url = (payload.get("imageUrl") or "").strip() or None
        changes["imageUrl"] = True
    for key, attr in (("isActive", "is_active"), ("visibleToUsers", "visible_to_users"), ("visibleToSupporters", "visible_to_supporters")):
        if key in payload:
            value = parse_bool(payload.get(key))
            if value is None:
                raise ValidationError("Invalid game", {key: ["Must be a boolean"]})
            if value != getattr(game, attr):
                changes[key] = {"old": getattr(game, attr), "new": value}
                setattr(game, attr, value)
    if "formSchema" in payload:
        schema = parse_schema(payload.get("formSchema"))
        game.form_schema = dump_schema(schema)
        changes["formSchema"] = {"field_count": len(schema)}

    game.updated_at = utcnow()
    record_event(s, actor=user, action="game.update", entity_type="Game", entity_id=str(game.id), metadata={"changes": changes})
    return game


def delete_game(s: "Session", game: Game, user: "User") -> dict:
    from app.modhub.modules.mods.models import Mod

    mod_count = s.scalar(select(func.count(Mod.id)).where(Mod.game_id == game.id)) or 0
    if mod_count > 0:
        raise ConflictError(f"Cannot delete game. {mod_count} mod(s) are using this game.")
    result = {"id": game.id, "name": game.name}
    s.delete(game)
    record_event(s, actor=user, action="game.delete", entity_type="Game", entity_id=str(result["id"]), metadata={"name": result["name"]})
    return result
