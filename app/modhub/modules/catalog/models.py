from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.modhub.constants import DEFAULT_CATEGORY_COLOR
from app.modhub.models import Base, JSONType
from app.modhub.utils import isoformat, utcnow


class Game(Base):
    __tablename__ = "games"
    __table_args__ = (
        Index("game_slug_idx", "slug"),
        Index("game_active_idx", "is_active"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    visible_to_users: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    visible_to_supporters: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Upload form definition: ordered list of field descriptors (see form_schema module)
    form_schema: Mapped[list | None] = mapped_column(JSONType, nullable=True, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    def to_dict(self, *, admin: bool = False) -> dict:
        d = {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "imageUrl": self.image_url,
            "formSchema": list(self.form_schema or []),
        }
        if admin:
            d.update(
                {
                    "isActive": self.is_active,
                    "visibleToUsers": self.visible_to_users,
                    "visibleToSupporters": self.visible_to_supporters,
                    "createdAt": isoformat(self.created_at),
                    "updatedAt": isoformat(self.updated_at),
                }
            )
        return d


class Category(Base):
    __tablename__ = "categories"
    __table_args__ = (Index("category_slug_idx", "slug"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    color: Mapped[str | None] = mapped_column(String(16), nullable=True, default=DEFAULT_CATEGORY_COLOR)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "color": self.color,
        }
