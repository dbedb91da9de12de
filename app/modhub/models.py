from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, Enum, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from app.modhub.constants import (
    DEFAULT_MAX_IMAGES_PER_MOD,
    DEFAULT_MAX_MOD_FILE_SIZE,
    DEFAULT_MAX_TOTAL_IMAGE_SIZE,
    DEFAULT_PROFILE_PICTURE,
    USER_ROLES,
)
from app.modhub.utils import utcnow

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        Index("username_idx", "username"),
        Index("email_idx", "email"),
        Index("role_idx", "role"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(
        Enum(*USER_ROLES, name="user_role"),
        nullable=False,
        default="user",
    )
    profile_picture: Mapped[str | None] = mapped_column(String(1024), nullable=True, default=DEFAULT_PROFILE_PICTURE)
    bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    suspended_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    sessions: Mapped[list["UserSession"]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_supporter(self) -> bool:
        return self.role in ("supporter", "admin")

    def to_public_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "profilePicture": self.profile_picture,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "role": self.role,
            "profilePicture": self.profile_picture,
            "bio": self.bio,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
            "suspendedUntil": self.suspended_until.isoformat() if self.suspended_until else None,
        }


class UserSession(Base):
    """
    Server-side login session. `id` is the hex SHA-256 of the cookie token;
    the raw token is never stored.
    """

    __tablename__ = "session"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    user: Mapped[User] = relationship(back_populates="sessions", lazy="joined")


class UserFollow(Base):
    __tablename__ = "user_follows"
    __table_args__ = (
        UniqueConstraint("follower_id", "following_id", name="uq_user_follows_pair"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    follower_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    following_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)


class SystemSettings(Base):
    """Singleton row (id=1). Sizes are in megabytes."""

    __tablename__ = "system_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    max_mod_file_size: Mapped[int] = mapped_column(Integer, nullable=False, default=DEFAULT_MAX_MOD_FILE_SIZE)
    max_images_per_mod: Mapped[int] = mapped_column(Integer, nullable=False, default=DEFAULT_MAX_IMAGES_PER_MOD)
    max_total_image_size: Mapped[int] = mapped_column(Integer, nullable=False, default=DEFAULT_MAX_TOTAL_IMAGE_SIZE)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    @classmethod
    def load(cls, s) -> "SystemSettings":
        """Returns the singleton row, creating it with defaults on first use."""
        row = s.get(cls, 1)
        if row is None:
            row = cls(
                id=1,
                max_mod_file_size=DEFAULT_MAX_MOD_FILE_SIZE,
                max_images_per_mod=DEFAULT_MAX_IMAGES_PER_MOD,
                max_total_image_size=DEFAULT_MAX_TOTAL_IMAGE_SIZE,
            )
            s.add(row)
            s.flush()
        return row

    def to_dict(self) -> dict:
        return {
            "maxModFileSize": self.max_mod_file_size,
            "maxImagesPerMod": self.max_images_per_mod,
            "maxTotalImageSize": self.max_total_image_size,
        }


class AuditEvent(Base):
    """
    Append-only audit trail event.
    Keep this table intentionally generic; module-specific tables can refer to it by id if needed.
    """

    __tablename__ = "audit_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    actor_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    actor_username: Mapped[str | None] = mapped_column(String(32), nullable=True)

    action: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "auth.login"
    entity_type: Mapped[str | None] = mapped_column(String(128), nullable=True)  # e.g. "Mod"
    entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    metadata_json: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    client_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.modhub.modules.catalog.models import Category, Game  # noqa: E402,F401
from app.modhub.modules.mods.models import (  # noqa: E402,F401
    Mod,
    ModFile,
    ModImage,
    ModStats,
    ModTag,
    UserModDownload,
    UserModLike,
    UserModRating,
)
from app.modhub.modules.collections.models import Collection, CollectionMod  # noqa: E402,F401
