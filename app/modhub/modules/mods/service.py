from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from sqlalchemy import asc, desc, func, or_, select

from app.modhub.audit import record_event
from app.modhub.constants import MOD_SORT_KEYS
from app.modhub.errors import ForbiddenError, NotFoundError, ValidationError
from app.modhub.models import User
from app.modhub.modules.catalog.models import Category, Game
from app.modhub.modules.form_schema.schema import parse_schema, validate_submission
from app.modhub.modules.mods.models import (
    Mod,
    ModFile,
    ModStats,
    ModTag,
    UserModDownload,
    UserModLike,
    UserModRating,
)
from app.modhub.utils import format_file_size, parse_bool, parse_int, slugify, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.modhub.storage import Storage

logger = logging.getLogger(__name__)

DEFAULT_VERSION = "1.0.0"


# --- queries --------------------------------------------------------------


def _sort_column(sort_by: str):
    return {
        "downloads": ModStats.total_downloads,
        "rating": ModStats.rating,
        "created": Mod.created_at,
        "updated": Mod.updated_at,
        "likes": ModStats.likes,
    }[sort_by]


def list_mods(
    s: "Session",
    *,
    limit: int,
    offset: int,
    game_slug: str | None = None,
    category: str | None = None,
    search: str | None = None,
    sort_by: str = "created",
    sort_order: str = "desc",
) -> tuple[list[Mod], int]:
    if sort_by not in MOD_SORT_KEYS:
        raise ValidationError(f"sortBy must be one of: {', '.join(MOD_SORT_KEYS)}", {"sortBy": ["Invalid sort key"]})
    if sort_order not in ("asc", "desc"):
        raise ValidationError("sortOrder must be 'asc' or 'desc'", {"sortOrder": ["Invalid sort order"]})

    conditions = [Mod.is_active.is_(True)]
    if game_slug:
        conditions.append(Game.slug == game_slug)
    if category:
        conditions.append(Category.slug == category)
    if search:
        like = f"%{search.strip()}%"
        conditions.append(or_(Mod.title.ilike(like), Mod.description.ilike(like)))

    base = (
        select(Mod.id)
        .join(Game, Mod.game_id == Game.id)
        .join(Category, Mod.category_id == Category.id)
        .outerjoin(ModStats, ModStats.mod_id == Mod.id)
        .where(*conditions)
    )
    total = s.scalar(select(func.count()).select_from(base.subquery())) or 0

    col = _sort_column(sort_by)
    direction = desc if sort_order == "desc" else asc
    ids = list(s.scalars(base.order_by(direction(col), desc(Mod.id)).limit(limit).offset(offset)))
    return _load_in_order(s, ids), int(total)


def _load_in_order(s: "Session", ids: list[int]) -> list[Mod]:
    if not ids:
        return []
    by_id = {m.id: m for m in s.scalars(select(Mod).where(Mod.id.in_(ids))).unique()}
    return [by_id[i] for i in ids if i in by_id]


def list_featured_mods(s: "Session", *, limit: int = 4) -> list[Mod]:
    q = (
        select(Mod.id)
        .outerjoin(ModStats, ModStats.mod_id == Mod.id)
        .where(Mod.is_active.is_(True), Mod.is_featured.is_(True))
        .order_by(desc(func.coalesce(ModStats.rating, 0)), desc(Mod.id))
        .limit(limit)
    )
    return _load_in_order(s, list(s.scalars(q)))


def list_author_mods(
    s: "Session", username: str, *, limit: int, offset: int, game_slug: str | None = None
) -> tuple[User, list[Mod], int]:
    author = s.scalar(select(User).where(User.username == username))
    if author is None:
        raise NotFoundError("Author not found")
    conditions = [Mod.author_id == author.id, Mod.is_active.is_(True)]
    if game_slug:
        conditions.append(Game.slug == game_slug)
    base = select(Mod.id).join(Game, Mod.game_id == Game.id).where(*conditions)
    total = s.scalar(select(func.count()).select_from(base.subquery())) or 0
    ids = list(s.scalars(base.order_by(desc(Mod.created_at), desc(Mod.id)).limit(limit).offset(offset)))
    return author, _load_in_order(s, ids), int(total)


def get_mod(s: "Session", mod_id: int) -> Mod:
    mod = s.get(Mod, mod_id)
    if mod is None:
        raise NotFoundError("Mod not found")
    return mod


def get_visible_mod(s: "Session", mod_id: int, viewer: User | None) -> Mod:
    """Inactive mods are only visible to their author and admins."""
    mod = get_mod(s, mod_id)
    if not mod.is_active and not can_manage_mod(mod, viewer):
        raise NotFoundError("Mod not found")
    return mod


def get_visible_mod_by_slug(s: "Session", slug: str, viewer: User | None) -> Mod:
    mod = s.scalar(select(Mod).where(Mod.slug == slug))
    if mod is None or (not mod.is_active and not can_manage_mod(mod, viewer)):
        raise NotFoundError("Mod not found")
    return mod


def can_manage_mod(mod: Mod, user: User | None) -> bool:
    return user is not None and (user.is_admin or mod.author_id == user.id)


def require_mod_owner(mod: Mod, user: User) -> None:
    if not can_manage_mod(mod, user):
        raise ForbiddenError("You do not have permission to modify this mod")


def _ensure_stats(s: "Session", mod: Mod) -> ModStats:
    if mod.stats is None:
        mod.stats = ModStats(mod_id=mod.id)
        s.flush()
    return mod.stats


def record_view(s: "Session", mod: Mod) -> None:
    stats = _ensure_stats(s, mod)
    stats.views = (stats.views or 0) + 1


# --- create / update ------------------------------------------------------


def unique_slug(s: "Session", title: str, *, exclude_id: int | None = None) -> str:
    base = slugify(title) or "mod"
    slug = base
    n = 2
    while True:
        q = select(Mod.id).where(Mod.slug == slug)
        if exclude_id:
            q = q.where(Mod.id != exclude_id)
        if not s.scalar(q):
            return slug
        slug = f"{base}-{n}"
        n += 1


def parse_tags(raw) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        items = raw.split(",")
    elif isinstance(raw, list):
        items = [str(t) for t in raw]
    else:
        raise ValidationError("tags must be a comma-separated string or a list", {"tags": ["Invalid tags"]})
    seen: list[str] = []
    for t in items:
        t = t.strip()[:64]
        if t and t not in seen:
            seen.append(t)
    return seen


def _resolve_game(s: "Session", payload: dict) -> Game:
    game = None
    game_id = parse_int(payload.get("gameId"))
    slug = payload.get("game") or payload.get("gameSlug")
    if game_id:
        game = s.get(Game, game_id)
    elif isinstance(slug, str) and slug.strip():
        game = s.scalar(select(Game).where(Game.slug == slug.strip()))
    if game is None or not game.is_active:
        raise ValidationError("Game not found.", {"game": ["Invalid game selected."]})
    return game


def _resolve_category(s: "Session", payload: dict) -> Category:
    category_id = parse_int(payload.get("categoryId"))
    if category_id:
        category = s.get(Category, category_id)
        if category is None:
            raise ValidationError("Category not found.", {"categoryId": ["Invalid category selected."]})
        return category
    # No explicit category: first one by name.
    category = s.scalar(select(Category).order_by(Category.name.asc()).limit(1))
    if category is None:
        raise ValidationError("No categories available.", {"general": ["No categories available. Please contact admin."]})
    return category


def create_mod(s: "Session", payload: dict, user: User) -> Mod:
    errors: dict[str, list[str]] = {}
    title = payload.get("title")
    description = payload.get("description")
    if not isinstance(title, str) or not title.strip():
        errors["title"] = ["Title is required."]
    elif len(title.strip()) > 255:
        errors["title"] = ["Title must be at most 255 characters."]
    if not isinstance(description, str) or not description.strip():
        errors["description"] = ["Description is required."]
    if errors:
        raise ValidationError("Validation failed.", errors)

    game = _resolve_game(s, payload)
    category = _resolve_category(s, payload)
    custom_fields = validate_submission(parse_schema(game.form_schema or []), payload.get("customFields"))
    tags = parse_tags(payload.get("tags"))
    for key in ("version", "imageUrl"):
        if payload.get(key) is not None and not isinstance(payload[key], str):
            raise ValidationError(f"{key} must be a string", {key: ["Must be a string"]})
    version = (payload.get("version") or "").strip() or DEFAULT_VERSION

    now = utcnow()
    mod = Mod(
        title=title.strip(),
        slug=unique_slug(s, title),
        description=description.strip(),
        version=version,
        image_url=(payload.get("imageUrl") or "").strip() or None,
        is_active=True,
        is_featured=False,
        is_adult=bool(parse_bool(payload.get("isAdult"))),
        custom_fields=custom_fields,
        author_id=user.id,
        game_id=game.id,
        category_id=category.id,
        created_at=now,
        updated_at=now,
        tags=[ModTag(tag=t) for t in tags],
        stats=ModStats(updated_at=now),
    )
    s.add(mod)
    s.flush()

    record_event(
        s,
        actor=user,
        action="mod.create",
        entity_type="Mod",
        entity_id=str(mod.id),
        metadata={"title": mod.title, "game": game.slug, "tags": tags},
    )
    return mod


def update_mod(s: "Session", mod: Mod, payload: dict, user: User) -> Mod:
    changes: dict[str, object] = {}
    for key, attr in (("title", "title"), ("description", "description"), ("version", "version"), ("imageUrl", "image_url")):
        if key in payload:
            value = payload.get(key)
            if value is not None and not isinstance(value, str):
                raise ValidationError(f"{key} must be a string", {key: ["Must be a string"]})
            value = (value or "").strip()
            if key in ("title", "description", "version") and not value:
                raise ValidationError(f"{key} cannot be empty", {key: ["Required"]})
            new_value = (value or None) if key == "imageUrl" else value
            if new_value != getattr(mod, attr):
                changes[key] = {"old": getattr(mod, attr), "new": new_value}
                setattr(mod, attr, new_value)
    if "title" in changes:
        mod.slug = unique_slug(s, mod.title, exclude_id=mod.id)
    for key, attr in (("isActive", "is_active"), ("isFeatured", "is_featured"), ("isAdult", "is_adult")):
        if isinstance(payload.get(key), bool) and payload[key] != getattr(mod, attr):
            changes[key] = {"old": getattr(mod, attr), "new": payload[key]}
            setattr(mod, attr, payload[key])
    if "categoryId" in payload:
        category = _resolve_category(s, payload)
        if category.id != mod.category_id:
            changes["categoryId"] = {"old": mod.category_id, "new": category.id}
            mod.category_id = category.id
    if "tags" in payload:
        tags = parse_tags(payload.get("tags"))
        mod.tags = [ModTag(mod_id=mod.id, tag=t) for t in tags]
        changes["tags"] = tags
    if "customFields" in payload:
        game = s.get(Game, mod.game_id)
        schema = parse_schema(game.form_schema if game else [])
        mod.custom_fields = validate_submission(schema, payload.get("customFields"))
        changes["customFields"] = True

    if payload.get("isFeatured") is True and not mod.is_active:
        raise ValidationError("Cannot feature an inactive mod")
    if not mod.is_active and mod.is_featured:
        # featured implies active
        changes["isFeatured"] = {"old": True, "new": False}
        mod.is_featured = False
    if not changes:
        raise ValidationError("No valid fields to update")

    mod.updated_at = utcnow()
    record_event(s, actor=user, action="mod.update", entity_type="Mod", entity_id=str(mod.id), metadata={"changes": changes})
    return mod


def set_mod_status(s: "Session", mod: Mod, payload: dict, user: User) -> Mod:
    is_active = payload.get("isActive")
    is_featured = payload.get("isFeatured")
    if is_active is not None and not isinstance(is_active, bool):
        raise ValidationError("isActive must be a boolean", {"isActive": ["Must be a boolean"]})
    if is_featured is not None and not isinstance(is_featured, bool):
        raise ValidationError("isFeatured must be a boolean", {"isFeatured": ["Must be a boolean"]})

    effective_active = mod.is_active if is_active is None else is_active
    if is_featured and not effective_active:
        raise ValidationError("Cannot feature an inactive mod")

    old = {"isActive": mod.is_active, "isFeatured": mod.is_featured}
    if is_active is not None:
        mod.is_active = is_active
        if not is_active:
            # featured implies active
            mod.is_featured = False
    if is_featured is not None:
        mod.is_featured = is_featured
    mod.updated_at = utcnow()
    record_event(
        s,
        actor=user,
        action="mod.status",
        entity_type="Mod",
        entity_id=str(mod.id),
        metadata={"old": old, "new": {"isActive": mod.is_active, "isFeatured": mod.is_featured}},
    )
    return mod


def recalculate_size(s: "Session", mod: Mod) -> str:
    total = s.scalar(select(func.coalesce(func.sum(ModFile.file_size), 0)).where(ModFile.mod_id == mod.id)) or 0
    mod.size = format_file_size(int(total))
    mod.updated_at = utcnow()
    return mod.size


def delete_mod(s: "Session", mod: Mod, user: User, storage: "Storage | None" = None) -> None:
    keys = [i.storage_key for i in mod.images if i.storage_key] + [f.storage_key for f in mod.files if f.storage_key]
    record_event(
        s,
        actor=user,
        action="mod.delete",
        entity_type="Mod",
        entity_id=str(mod.id),
        metadata={"title": mod.title, "storage_keys": keys},
    )
    s.delete(mod)
    s.flush()
    if storage is None:
        return
    for key in keys:
        try:
            storage.delete(key)
        except Exception as e:
            # DB row is gone either way; orphaned objects are listed in the audit event.
            logger.warning("Failed to delete storage object key=%s: %s", key, e)


# --- engagement -----------------------------------------------------------


def toggle_like(s: "Session", mod: Mod, user: User) -> tuple[bool, int]:
    stats = _ensure_stats(s, mod)
    existing = s.scalar(select(UserModLike).where(UserModLike.user_id == user.id, UserModLike.mod_id == mod.id))
    if existing is not None:
        s.delete(existing)
        stats.likes = max((stats.likes or 0) - 1, 0)
        liked = False
    else:
        s.add(UserModLike(user_id=user.id, mod_id=mod.id))
        stats.likes = (stats.likes or 0) + 1
        liked = True
    stats.updated_at = utcnow()
    return liked, stats.likes


def rate_mod(s: "Session", mod: Mod, user: User, rating, review: str | None = None) -> ModStats:
    value = parse_int(rating)
    if value is None or value < 1 or value > 5:
        raise ValidationError("Rating must be an integer from 1 to 5", {"rating": ["Must be 1..5"]})
    if review is not None and not isinstance(review, str):
        raise ValidationError("review must be a string", {"review": ["Must be a string"]})

    now = utcnow()
    existing = s.scalar(select(UserModRating).where(UserModRating.user_id == user.id, UserModRating.mod_id == mod.id))
    if existing is None:
        s.add(UserModRating(user_id=user.id, mod_id=mod.id, rating=value, review=review, created_at=now, updated_at=now))
    else:
        existing.rating = value
        existing.review = review
        existing.updated_at = now
    s.flush()

    avg, count = s.execute(
        select(func.avg(UserModRating.rating), func.count(UserModRating.id)).where(UserModRating.mod_id == mod.id)
    ).one()
    stats = _ensure_stats(s, mod)
    stats.rating = round(float(avg or 0), 2)
    stats.rating_count = int(count or 0)
    stats.updated_at = now
    return stats


def record_download(
    s: "Session",
    mod: Mod,
    user: User | None,
    *,
    file_id: int | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> str:
    """Returns the URL to download from and bumps counters."""
    target: ModFile | None = None
    ready = [f for f in mod.files if f.file_url]
    if file_id is not None:
        target = next((f for f in ready if f.id == file_id), None)
        if target is None:
            raise NotFoundError("File not found")
    elif ready:
        target = sorted(ready, key=lambda f: (not f.is_main_file, -f.id))[0]

    url = target.file_url if target is not None else mod.download_url
    if not url:
        raise NotFoundError("No downloadable file for this mod")

    s.add(
        UserModDownload(
            user_id=user.id if user else None,
            mod_id=mod.id,
            file_id=target.id if target is not None else None,
            ip_address=ip_address,
            user_agent=(user_agent or "")[:512] or None,
        )
    )
    if target is not None:
        target.download_count = (target.download_count or 0) + 1
    stats = _ensure_stats(s, mod)
    stats.total_downloads = (stats.total_downloads or 0) + 1
    stats.weekly_downloads = (stats.weekly_downloads or 0) + 1
    stats.monthly_downloads = (stats.monthly_downloads or 0) + 1
    stats.updated_at = utcnow()
    return url


def refresh_download_windows(s: "Session") -> int:
    """
    Recomputes weekly/monthly download counters from user_mod_downloads.
    Returns the number of stats rows touched.
    """
    now = utcnow()
    week_ago = now - timedelta(days=7)
    month_ago = now - timedelta(days=30)
    weekly = dict(
        s.execute(
            select(UserModDownload.mod_id, func.count(UserModDownload.id))
            .where(UserModDownload.created_at >= week_ago)
            .group_by(UserModDownload.mod_id)
        ).all()
    )
    monthly = dict(
        s.execute(
            select(UserModDownload.mod_id, func.count(UserModDownload.id))
            .where(UserModDownload.created_at >= month_ago)
            .group_by(UserModDownload.mod_id)
        ).all()
    )
    touched = 0
    for stats in s.scalars(select(ModStats)):
        stats.weekly_downloads = int(weekly.get(stats.mod_id, 0))
        stats.monthly_downloads = int(monthly.get(stats.mod_id, 0))
        stats.updated_at = now
        touched += 1
    return touched
