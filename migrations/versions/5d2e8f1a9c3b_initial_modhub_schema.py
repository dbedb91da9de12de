"""initial modhub schema

Revision ID: 5d2e8f1a9c3b
Revises:
Create Date: 2026-10-19 09:12:44.218307

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '5d2e8f1a9c3b'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
USER_ROLE = sa.Enum("admin", "user", "supporter", "banned", "suspended", name="user_role")


def upgrade() -> None:
    """Create users/sessions, catalog, mods, collections, settings and audit tables."""
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = set(inspector.get_table_names())

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("username", sa.String(32), nullable=False, unique=True),
            sa.Column("email", sa.String(320), nullable=False, unique=True),
            sa.Column("password_hash", sa.String(255), nullable=False),
            sa.Column("role", USER_ROLE, nullable=False, server_default="user"),
            sa.Column("profile_picture", sa.String(1024), nullable=True),
            sa.Column("bio", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("suspended_until", sa.DateTime(), nullable=True),
        )
        op.create_index("username_idx", "users", ["username"])
        op.create_index("email_idx", "users", ["email"])
        op.create_index("role_idx", "users", ["role"])

    if "session" not in existing_tables:
        op.create_table(
            "session",
            sa.Column("id", sa.String(64), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("expires_at", sa.DateTime(), nullable=False),
        )

    if "user_follows" not in existing_tables:
        op.create_table(
            "user_follows",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("follower_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("following_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("follower_id", "following_id", name="uq_user_follows_pair"),
        )

    if "games" not in existing_tables:
        op.create_table(
            "games",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(255), nullable=False, unique=True),
            sa.Column("slug", sa.String(255), nullable=False, unique=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("image_url", sa.String(1024), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("visible_to_users", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("visible_to_supporters", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("form_schema", JSONType, nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("game_slug_idx", "games", ["slug"])
        op.create_index("game_active_idx", "games", ["is_active"])

    if "categories" not in existing_tables:
        op.create_table(
            "categories",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(255), nullable=False, unique=True),
            sa.Column("slug", sa.String(255), nullable=False, unique=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("color", sa.String(16), nullable=True, server_default="#6B7280"),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("category_slug_idx", "categories", ["slug"])

    if "mods" not in existing_tables:
        op.create_table(
            "mods",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("title", sa.String(255), nullable=False),
            sa.Column("slug", sa.String(255), nullable=False, unique=True),
            sa.Column("description", sa.Text(), nullable=False),
            sa.Column("version", sa.String(64), nullable=False, server_default="1.0.0"),
            sa.Column("image_url", sa.String(1024), nullable=True),
            sa.Column("download_url", sa.String(1024), nullable=True),
            sa.Column("size", sa.String(32), nullable=True, server_default="N/A"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("is_featured", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_adult", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("custom_fields", JSONType, nullable=True),
            sa.Column("author_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("game_id", sa.Integer(), sa.ForeignKey("games.id"), nullable=False),
            sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("featured_mods_idx", "mods", ["is_featured", "is_active"])
        op.create_index("mods_created_at_idx", "mods", ["created_at"])
        op.create_index("mods_updated_at_idx", "mods", ["updated_at"])
        op.create_index("mods_author_idx", "mods", ["author_id"])
        op.create_index("mods_game_idx", "mods", ["game_id"])
        op.create_index("mods_category_idx", "mods", ["category_id"])
        op.create_index("mods_active_idx", "mods", ["is_active"])
        op.create_index("mods_game_category_idx", "mods", ["game_id", "category_id", "is_active"])

    if "mod_tags" not in existing_tables:
        op.create_table(
            "mod_tags",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("mod_id", sa.Integer(), sa.ForeignKey("mods.id", ondelete="CASCADE"), nullable=False),
            sa.Column("tag", sa.String(64), nullable=False),
        )

    if "mod_images" not in existing_tables:
        op.create_table(
            "mod_images",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("mod_id", sa.Integer(), sa.ForeignKey("mods.id", ondelete="CASCADE"), nullable=False),
            sa.Column("image_url", sa.String(1024), nullable=False, server_default=""),
            sa.Column("storage_key", sa.String(512), nullable=False, server_default=""),
            sa.Column("file_name", sa.String(255), nullable=False),
            sa.Column("file_size", sa.BigInteger(), nullable=False, server_default="0"),
            sa.Column("content_type", sa.String(128), nullable=False, server_default="application/octet-stream"),
            sa.Column("caption", sa.String(512), nullable=True),
            sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("is_main", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("uploaded_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if "mod_files" not in existing_tables:
        op.create_table(
            "mod_files",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("mod_id", sa.Integer(), sa.ForeignKey("mods.id", ondelete="CASCADE"), nullable=False),
            sa.Column("file_name", sa.String(255), nullable=False),
            sa.Column("file_url", sa.String(1024), nullable=False, server_default=""),
            sa.Column("storage_key", sa.String(512), nullable=False, server_default=""),
            sa.Column("file_size", sa.BigInteger(), nullable=False, server_default="0"),
            sa.Column("content_type", sa.String(128), nullable=False, server_default="application/octet-stream"),
            sa.Column("version", sa.String(64), nullable=False, server_default="1.0.0"),
            sa.Column("is_main_file", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("download_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("uploaded_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if "mod_stats" not in existing_tables:
        op.create_table(
            "mod_stats",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("mod_id", sa.Integer(), sa.ForeignKey("mods.id", ondelete="CASCADE"), nullable=False, unique=True),
            sa.Column("total_downloads", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("weekly_downloads", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("monthly_downloads", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("likes", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("views", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("rating", sa.Float(), nullable=False, server_default="0"),
            sa.Column("rating_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("stats_downloads_idx", "mod_stats", ["total_downloads"])
        op.create_index("stats_likes_idx", "mod_stats", ["likes"])
        op.create_index("stats_rating_idx", "mod_stats", ["rating"])

    if "user_mod_likes" not in existing_tables:
        op.create_table(
            "user_mod_likes",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("mod_id", sa.Integer(), sa.ForeignKey("mods.id", ondelete="CASCADE"), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("user_id", "mod_id", name="uq_user_mod_like"),
        )

    if "user_mod_ratings" not in existing_tables:
        op.create_table(
            "user_mod_ratings",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("mod_id", sa.Integer(), sa.ForeignKey("mods.id", ondelete="CASCADE"), nullable=False),
            sa.Column("rating", sa.Integer(), nullable=False),
            sa.Column("review", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("user_id", "mod_id", name="uq_user_mod_rating"),
        )

    if "user_mod_downloads" not in existing_tables:
        op.create_table(
            "user_mod_downloads",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("mod_id", sa.Integer(), sa.ForeignKey("mods.id", ondelete="CASCADE"), nullable=False),
            sa.Column("file_id", sa.Integer(), sa.ForeignKey("mod_files.id", ondelete="SET NULL"), nullable=True),
            sa.Column("ip_address", sa.String(64), nullable=True),
            sa.Column("user_agent", sa.String(512), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if "collections" not in existing_tables:
        op.create_table(
            "collections",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("is_public", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("idx_collections_user_id", "collections", ["user_id"])
        op.create_index("idx_collections_is_public", "collections", ["is_public"])

    if "collection_mods" not in existing_tables:
        op.create_table(
            "collection_mods",
            sa.Column("collection_id", sa.Integer(), sa.ForeignKey("collections.id", ondelete="CASCADE"), primary_key=True),
            sa.Column("mod_id", sa.Integer(), sa.ForeignKey("mods.id", ondelete="CASCADE"), primary_key=True),
            sa.Column("added_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("order", sa.Integer(), nullable=True),
        )
        op.create_index("idx_collection_mods_mod_id", "collection_mods", ["mod_id"])

    if "system_settings" not in existing_tables:
        op.create_table(
            "system_settings",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("max_mod_file_size", sa.Integer(), nullable=False, server_default="100"),
            sa.Column("max_images_per_mod", sa.Integer(), nullable=False, server_default="10"),
            sa.Column("max_total_image_size", sa.Integer(), nullable=False, server_default="50"),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if "audit_events" not in existing_tables:
        op.create_table(
            "audit_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("request_id", sa.String(64), nullable=True),
            sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("actor_username", sa.String(32), nullable=True),
            sa.Column("action", sa.String(128), nullable=False),
            sa.Column("entity_type", sa.String(128), nullable=True),
            sa.Column("entity_id", sa.String(128), nullable=True),
            sa.Column("metadata_json", JSONType, nullable=True),
            sa.Column("client_ip", sa.String(64), nullable=True),
        )


def downgrade() -> None:
    for table in (
        "audit_events",
        "system_settings",
        "collection_mods",
        "collections",
        "user_mod_downloads",
        "user_mod_ratings",
        "user_mod_likes",
        "mod_stats",
        "mod_files",
        "mod_images",
        "mod_tags",
        "mods",
        "categories",
        "games",
        "user_follows",
        "session",
        "users",
    ):
        op.drop_table(table)
    USER_ROLE.drop(op.get_bind(), checkfirst=True)
