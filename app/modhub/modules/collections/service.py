from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import desc, func, select

from app.modhub.audit import record_event
from app.modhub.errors import NotFoundError, ValidationError
from app.modhub.modules.collections.models import Collection, CollectionMod
from app.modhub.modules.mods.models import Mod
from app.modhub.utils import parse_bool, parse_int, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.modhub.models import User


def list_public_collections(s: "Session", *, limit: int, offset: int) -> tuple[list[Collection], int]:
    total = s.scalar(select(func.count(Collection.id)).where(Collection.is_public.is_(True))) or 0
    rows = list(
        s.scalars(
            select(Collection)
            .where(Collection.is_public.is_(True))
            .order_by(desc(Collection.updated_at), desc(Collection.id))
            .limit(limit)
            .offset(offset)
        ).unique()
    )
    return rows, int(total)


def list_user_collections(s: "Session", user: "User") -> list[Collection]:
    return list(
        s.scalars(
            select(Collection).where(Collection.user_id == user.id).order_by(desc(Collection.updated_at), desc(Collection.id))
        ).unique()
    )


def get_viewable_collection(s: "Session", collection_id: int, viewer: "User | None") -> Collection:
    """Private collections look like missing ones to everybody but the owner."""
    c = s.get(Collection, collection_id)
    if c is None or (not c.is_public and (viewer is None or viewer.id != c.user_id)):
        raise NotFoundError("Collection not found")
    return c


def get_owned_collection(s: "Session", collection_id, user: "User") -> Collection:
    cid = parse_int(collection_id)
    c = s.get(Collection, cid) if cid else None
    if c is None or c.user_id != user.id:
        raise NotFoundError("Collection not found or unauthorized")
    return c


def ordered_entries(c: Collection) -> list[CollectionMod]:
    """Explicit order first (nulls last), then most recently added."""
    return sorted(
        c.entries,
        key=lambda e: (e.order is None, e.order if e.order is not None else 0, -(e.added_at.timestamp() if e.added_at else 0)),
    )


def collection_detail(c: Collection, viewer: "User | None" = None) -> dict:
    entries = [
        e
        for e in ordered_entries(c)
        if e.mod is not None and (e.mod.is_active or (viewer is not None and (viewer.is_admin or viewer.id == e.mod.author_id)))
    ]
    return {
        "collection": c.to_dict(),
        "mods": [
            {"mod": e.mod.to_summary(), "addedAt": e.added_at.isoformat() if e.added_at else None, "order": e.order}
            for e in entries
        ],
    }


def create_collection(s: "Session", payload: dict, user: "User") -> Collection:
    name = payload.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Collection name is required", {"name": ["Required"]})
    description = payload.get("description")
    now = utcnow()
    c = Collection(
        user_id=user.id,
        name=name.strip()[:255],
        description=(description.strip() or None) if isinstance(description, str) else None,
        is_public=bool(parse_bool(payload.get("isPublic"))),
        created_at=now,
        updated_at=now,
    )
    s.add(c)
    s.flush()
    record_event(s, actor=user, action="collection.create", entity_type="Collection", entity_id=str(c.id))
    return c


def update_collection(s: "Session", c: Collection, payload: dict, user: "User") -> Collection:
    touched = False
    if "name" in payload:
        name = payload.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("Collection name is required", {"name": ["Required"]})
        c.name = name.strip()[:255]
        touched = True
    if "description" in payload:
        description = payload.get("description")
        c.description = (description.strip() or None) if isinstance(description, str) else None
        touched = True
    if "isPublic" in payload:
        c.is_public = bool(parse_bool(payload.get("isPublic")))
        touched = True
    if not touched:
        raise ValidationError("No fields to update")
    c.updated_at = utcnow()
    record_event(s, actor=user, action="collection.update", entity_type="Collection", entity_id=str(c.id))
    return c


def delete_collection(s: "Session", c: Collection, user: "User") -> None:
    record_event(s, actor=user, action="collection.delete", entity_type="Collection", entity_id=str(c.id), metadata={"name": c.name})
    s.delete(c)


def add_mod(s: "Session", c: Collection, mod_id, user: "User") -> CollectionMod:
    mid = parse_int(mod_id)
    mod = s.get(Mod, mid) if mid else None
    if mod is None:
        raise NotFoundError("Mod not found")
    if any(e.mod_id == mod.id for e in c.entries):
        raise ValidationError("Mod is already in this collection")
    max_order = s.scalar(select(func.max(CollectionMod.order)).where(CollectionMod.collection_id == c.id))
    entry = CollectionMod(collection_id=c.id, mod_id=mod.id, order=0 if max_order is None else max_order + 1, added_at=utcnow())
    c.entries.append(entry)
    c.updated_at = utcnow()
    s.flush()
    record_event(
        s,
        actor=user,
        action="collection.add_mod",
        entity_type="Collection",
        entity_id=str(c.id),
        metadata={"mod_id": mod.id},
    )
    return entry


def remove_mod(s: "Session", c: Collection, mod_id) -> None:
    mid = parse_int(mod_id)
    entry = next((e for e in c.entries if e.mod_id == mid), None)
    if entry is not None:
        c.entries.remove(entry)
        c.updated_at = utcnow()
        s.flush()


def reorder_mods(s: "Session", c: Collection, order) -> None:
    """`order` is the list of mod ids in their new order; each gets order = index."""
    if not isinstance(order, list):
        raise ValidationError("Collection ID and order array are required", {"order": ["Must be a list of mod ids"]})
    by_mod = {e.mod_id: e for e in c.entries}
    for i, raw in enumerate(order):
        entry = by_mod.get(parse_int(raw))
        if entry is not None:
            entry.order = i
    c.updated_at = utcnow()
    s.flush()
