from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.modhub.models import Base, User
from app.modhub.modules.mods.models import Mod
from app.modhub.utils import isoformat, utcnow


class Collection(Base):
    __tablename__ = "collections"
    __table_args__ = (
        Index("idx_collections_user_id", "user_id"),
        Index("idx_collections_is_public", "is_public"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    owner: Mapped[User] = relationship("User", lazy="joined")
    entries: Mapped[list["CollectionMod"]] = relationship(
        "CollectionMod",
        back_populates="collection",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "isPublic": self.is_public,
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
            "user": self.owner.to_public_dict() if self.owner else None,
            "modCount": len(self.entries),
        }


class CollectionMod(Base):
    __tablename__ = "collection_mods"
    __table_args__ = (Index("idx_collection_mods_mod_id", "mod_id"),)

    collection_id: Mapped[int] = mapped_column(ForeignKey("collections.id", ondelete="CASCADE"), primary_key=True)
    mod_id: Mapped[int] = mapped_column(ForeignKey("mods.id", ondelete="CASCADE"), primary_key=True)
    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    order: Mapped[int | None] = mapped_column(Integer, nullable=True)

    collection: Mapped[Collection] = relationship("Collection", back_populates="entries")
    mod: Mapped[Mod] = relationship("Mod", lazy="joined")
