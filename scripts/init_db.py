import os
import sys
from pathlib import Path

from sqlalchemy import select
from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.modhub.config import load_settings
from app.modhub.models import SystemSettings, User
from app.modhub.modules.catalog.models import Category, Game
from scripts._db_utils import script_session

DEFAULT_CATEGORIES = (
    ("Gameplay", "gameplay", "Mods that change core gameplay mechanics", "#10B981"),
    ("Graphics", "graphics", "Visual enhancements and texture packs", "#3B82F6"),
    ("Audio", "audio", "Sound effects and music modifications", "#8B5CF6"),
    ("UI/UX", "ui-ux", "User interface improvements", "#F59E0B"),
    ("Tools", "tools", "Utility mods and developer tools", "#EF4444"),
    ("Content", "content", "New content additions", "#06B6D4"),
)

SAMPLE_GAMES = (
    ("Featured Game", "featuredgame", "A popular game with lots of mods",
     "https://placehold.co/300x200/4F46E5/FFFFFF/png?text=Featured+Game"),
    ("Minecraft", "minecraft", "The popular sandbox game",
     "https://placehold.co/300x200/00AA00/FFFFFF/png?text=Minecraft"),
    ("Skyrim", "skyrim", "The Elder Scrolls V: Skyrim",
     "https://placehold.co/300x200/FFD700/000000/png?text=Skyrim"),
)


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed admin user, categories, sample games and the settings row in an idempotent way.
    Does NOT overwrite an existing admin user's password.
    """
    admin_username = (os.environ.get("ADMIN_USERNAME") or "admin").strip()
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@modhub.local").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = (database_url or load_settings().database_url).strip()

    # Direct engine/session so this can run in release without importing app.wsgi.
    with script_session(db_url) as s:
        for name, slug, description, color in DEFAULT_CATEGORIES:
            if not s.scalar(select(Category.id).where(Category.slug == slug)):
                s.add(Category(name=name, slug=slug, description=description, color=color))

        for name, slug, description, image_url in SAMPLE_GAMES:
            if not s.scalar(select(Game.id).where(Game.slug == slug)):
                s.add(Game(name=name, slug=slug, description=description, image_url=image_url, form_schema=[]))

        SystemSettings.load(s)

        admin = s.scalar(select(User).where(User.username == admin_username))
        if admin is None:
            admin = User(
                username=admin_username,
                email=admin_email,
                password_hash=generate_password_hash(admin_password),
                role="admin",
            )
            s.add(admin)
            print(f"Created admin user {admin_username} <{admin_email}>", flush=True)
        elif admin.role != "admin":
            admin.role = "admin"
            print(f"Promoted existing user {admin_username} to admin", flush=True)


def main() -> None:
    seed_only()
    print("Seed complete.", flush=True)


if __name__ == "__main__":
    main()
