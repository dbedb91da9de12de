from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import BigInteger, Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.modhub.models import Base, JSONType
from app.modhub.utils import isoformat, utcnow

if TYPE_CHECKING:
    from app.modhub.models import User
    from app.modhub.modules.catalog.models import Category, Game


class Mod(Base):
    __tablename__ = "mods"
    __table_args__ = (
        Index("featured_mods_idx", "is_featured", "is_active"),
        Index("mods_created_at_idx", "created_at"),
        Index("mods_updated_at_idx", "updated_at"),
        Index("mods_author_idx", "author_id"),
        Index("mods_game_idx", "game_id"),
        Index("mods_category_idx", "category_id"),
        Index("mods_active_idx", "is_active"),
        Index("mods_game_category_idx", "game_id", "category_id", "is_active"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    version: Mapped[str] = mapped_column(String(64), nullable=False, default="1.0.0")
    image_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    download_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    size: Mapped[str | None] = mapped_column(String(32), nullable=True, default="N/A")  # human readable, e.g. "1.5 MB"
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_featured: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_adult: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Values submitted through the game's upload form schema
    custom_fields: Mapped[dict | None] = mapped_column(JSONType, nullable=True, default=dict)

    author_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    game_id: Mapped[int] = mapped_column(ForeignKey("games.id"), nullable=False)
    category_id: Mapped[int] = mapped_column(ForeignKey("categories.id"), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    author: Mapped["User"] = relationship("User", lazy="joined")
    game: Mapped["Game"] = relationship("Game", lazy="joined")
    category: Mapped["Category"] = relationship("Category", lazy="joined")
    stats: Mapped["ModStats | None"] = relationship(
        "ModStats",
        back_populates="mod",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="joined",
    )
    tags: Mapped[list["ModTag"]] = relationship(
        "ModTag",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )
    images: Mapped[list["ModImage"]] = relationship(
        "ModImage",
        back_populates="mod",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ModImage.order",
        lazy="selectin",
    )
    files: Mapped[list["ModFile"]] = relationship(
        "ModFile",
        back_populates="mod",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )

    def to_summary(self) -> dict:
        stats = self.stats
        return {
            "id": self.id,
            "title": self.title,
            "slug": self.slug,
            "description": self.description,
            "version": self.version,
            "imageUrl": self.image_url,
            "size": self.size,
            "isAdult": self.is_adult,
            "isActive": self.is_active,
            "isFeatured": self.is_featured,
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
            "author": self.author.to_public_dict() if self.author else None,
            "game": {"id": self.game.id, "name": self.game.name, "slug": self.game.slug} if self.game else None,
            "category": self.category.to_dict() if self.category else None,
            "stats": stats.to_dict() if stats else None,
        }

    def to_detail(self) -> dict:
        d = self.to_summary()
        d.update(
            {
                "downloadUrl": self.download_url,
                "customFields": dict(self.custom_fields or {}),
                "tags": [t.tag for t in self.tags],
                "images": [i.to_dict() for i in self.images],
                # main file first, then newest
                "files": [
                    f.to_dict()
                    for f in sorted(
                        self.files,
                        key=lambda f: (not f.is_main_file, -(f.created_at.timestamp() if f.created_at else 0)),
                    )
                ],
            }
        )
        return d


class ModTag(Base):
    __tablename__ = "mod_tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    mod_id: Mapped[int] = mapped_column(ForeignKey("mods.id", ondelete="CASCADE"), nullable=False)
    tag: Mapped[str] = mapped_column(String(64), nullable=False)


class ModImage(Base):
    __tablename__ = "mod_images"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    mod_id: Mapped[int] = mapped_column(ForeignKey("mods.id", ondelete="CASCADE"), nullable=False)

    # url/storage_key/file_size are filled in when a presigned upload is finalized
    image_url: Mapped[str] = mapped_column(String(1024), nullable=False, default="")
    storage_key: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    content_type: Mapped[str] = mapped_column(String(128), nullable=False, default="application/octet-stream")
    caption: Mapped[str | None] = mapped_column(String(512), nullable=True)
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_main: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    uploaded_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    mod: Mapped[Mod] = relationship("Mod", back_populates="images")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "url": self.image_url,
            "key": self.storage_key,
            "fileName": self.file_name,
            "fileSize": self.file_size,
            "caption": self.caption,
            "order": self.order,
            "isMain": self.is_main,
        }


class ModFile(Base):
    __tablename__ = "mod_files"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    mod_id: Mapped[int] = mapped_column(ForeignKey("mods.id", ondelete="CASCADE"), nullable=False)

    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_url: Mapped[str] = mapped_column(String(1024), nullable=False, default="")
    storage_key: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    content_type: Mapped[str] = mapped_column(String(128), nullable=False, default="application/octet-stream")
    version: Mapped[str] = mapped_column(String(64), nullable=False, default="1.0.0")
    is_main_file: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    download_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    uploaded_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    mod: Mapped[Mod] = relationship("Mod", back_populates="files")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "fileName": self.file_name,
            "url": self.file_url,
            "key": self.storage_key,
            "fileSize": self.file_size,
            "version": self.version,
            "isMainFile": self.is_main_file,
            "downloadCount": self.download_count,
            "createdAt": isoformat(self.created_at),
        }


class ModStats(Base):
    __tablename__ = "mod_stats"
    __table_args__ = (
        Index("stats_downloads_idx", "total_downloads"),
        Index("stats_likes_idx", "likes"),
        Index("stats_rating_idx", "rating"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    mod_id: Mapped[int] = mapped_column(ForeignKey("mods.id", ondelete="CASCADE"), nullable=False, unique=True)
    total_downloads: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    weekly_downloads: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    monthly_downloads: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    likes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    views: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rating: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    rating_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    mod: Mapped[Mod] = relationship("Mod", back_populates="stats")

    def to_dict(self) -> dict:
        return {
            "totalDownloads": self.total_downloads,
            "weeklyDownloads": self.weekly_downloads,
            "monthlyDownloads": self.monthly_downloads,
            "likes": self.likes,
            "views": self.views,
            "rating": self.rating,
            "ratingCount": self.rating_count,
        }


class UserModLike(Base):
    __tablename__ = "user_mod_likes"
    __table_args__ = (UniqueConstraint("user_id", "mod_id", name="uq_user_mod_like"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    mod_id: Mapped[int] = mapped_column(ForeignKey("mods.id", ondelete="CASCADE"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)


class UserModRating(Base):
    __tablename__ = "user_mod_ratings"
    __table_args__ = (UniqueConstraint("user_id", "mod_id", name="uq_user_mod_rating"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    mod_id: Mapped[int] = mapped_column(ForeignKey("mods.id", ondelete="CASCADE"), nullable=False)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)  # 1..5
    review: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)


class UserModDownload(Base):
    __tablename__ = "user_mod_downloads"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    mod_id: Mapped[int] = mapped_column(ForeignKey("mods.id", ondelete="CASCADE"), nullable=False)
    file_id: Mapped[int | None] = mapped_column(ForeignKey("mod_files.id", ondelete="SET NULL"), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
