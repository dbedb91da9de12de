from datetime import timedelta

import pytest
from werkzeug.security import generate_password_hash

from app.modhub import create_app
from app.modhub.db import session_scope
from app.modhub.models import AuditEvent, Base, User
from app.modhub.modules.catalog.models import Category, Game
from app.modhub.modules.mods.models import Mod, ModFile, ModStats, UserModDownload
from app.modhub.utils import utcnow

LOADER_SCHEMA = [
    {"id": "loader", "type": "select", "label": "Loader", "options": ["Forge", "Fabric"], "required": True, "order": 0},
    {"id": "notes", "type": "textarea", "label": "Notes", "order": 1},
]


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("LOCAL_STORAGE_ROOT", str(tmp_path / "storage"))
    for k in ("DATABASE_URI", "S3_ENDPOINT", "ENDPOINT", "S3_BUCKET_NAME", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    with session_scope(app) as s:
        s.add_all(
            [
                User(username="alice", email="alice@example.com", password_hash=generate_password_hash("password1")),
                User(username="bob", email="bob@example.com", password_hash=generate_password_hash("password1")),
                Game(name="Featured Game", slug="featuredgame", is_active=True, form_schema=LOADER_SCHEMA),
                Game(name="Minecraft", slug="minecraft", is_active=True, form_schema=[]),
                Game(name="Retired", slug="retired", is_active=False, form_schema=[]),
                Category(name="Gameplay", slug="gameplay"),
                Category(name="Audio", slug="audio"),
            ]
        )
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client, username="alice"):
    r = client.post("/api/auth/login", json={"username": username, "password": "password1"})
    assert r.status_code == 200


def _ids(s):
    users = {u.username: u.id for u in s.query(User)}
    games = {g.slug: g.id for g in s.query(Game)}
    categories = {c.slug: c.id for c in s.query(Category)}
    return users, games, categories


def _seed_mods(app):
    """Four mods with distinct stats; the last one inactive."""
    now = utcnow()
    with session_scope(app) as s:
        users, games, categories = _ids(s)
        rows = [
            ("Alpha Trees", "featuredgame", "gameplay", users["alice"], 10, 4.5, 3, True),
            ("Bravo Sounds", "featuredgame", "audio", users["alice"], 50, 3.0, 9, True),
            ("Charlie Blocks", "minecraft", "gameplay", users["bob"], 30, 5.0, 1, True),
            ("Delta Hidden", "featuredgame", "gameplay", users["bob"], 99, 5.0, 99, False),
        ]
        ids = {}
        for i, (title, game, category, author, downloads, rating, likes, active) in enumerate(rows):
            mod = Mod(
                title=title,
                slug=title.lower().replace(" ", "-"),
                description=f"{title} description",
                author_id=author,
                game_id=games[game],
                category_id=categories[category],
                is_active=active,
                created_at=now - timedelta(days=10 - i),
                updated_at=now - timedelta(days=10 - i),
                stats=ModStats(total_downloads=downloads, rating=rating, likes=likes),
            )
            s.add(mod)
            s.flush()
            ids[title] = mod.id
    return ids


def test_create_mod(app, client):
    r = client.post("/api/mods", json={"title": "x"})
    assert r.status_code == 401

    _login(client)
    payload = {
        "title": "Better Trees",
        "description": "Trees, but better.",
        "game": "featuredgame",
        "tags": "nature, trees, nature",
        "customFields": {"loader": "Forge", "notes": "  works with shaders ", "bogus": 1},
    }
    r = client.post("/api/mods", json=payload)
    assert r.status_code == 201
    assert r.json["success"] is True
    assert r.json["gameSlug"] == "featuredgame"
    mod = r.json["mod"]
    assert mod["slug"] == "better-trees"
    assert mod["version"] == "1.0.0"
    assert mod["tags"] == ["nature", "trees"]
    assert mod["customFields"] == {"loader": "Forge", "notes": "works with shaders"}
    # no categoryId: first category by name
    assert mod["category"]["slug"] == "audio"
    assert mod["author"]["username"] == "alice"
    assert mod["stats"]["totalDownloads"] == 0

    r = client.post("/api/mods", json=payload)
    assert r.json["mod"]["slug"] == "better-trees-2"

    with session_scope(app) as s:
        assert s.query(AuditEvent).filter(AuditEvent.action == "mod.create").count() == 2


@pytest.mark.parametrize(
    "payload, field",
    [
        ({"description": "d", "game": "minecraft"}, "title"),
        ({"title": "t", "game": "minecraft"}, "description"),
        ({"title": "t", "description": "d", "game": "nope"}, "game"),
        ({"title": "t", "description": "d", "game": "retired"}, "game"),
        ({"title": "t", "description": "d", "game": "minecraft", "categoryId": 999}, "categoryId"),
        ({"title": "t", "description": "d", "game": "featuredgame", "customFields": {"loader": "Quilt"}}, "loader"),
        ({"title": "t", "description": "d", "game": "featuredgame"}, "loader"),
        ({"title": "t", "description": "d", "game": "minecraft", "version": 2}, "version"),
        ({"title": "t", "description": "d", "game": "minecraft", "imageUrl": 5}, "imageUrl"),
    ],
)
def test_create_mod_validation(client, payload, field):
    _login(client)
    r = client.post("/api/mods", json=payload)
    assert r.status_code == 400
    assert field in r.json["fields"]


def test_list_mods_sorting_and_filters(app, client):
    _seed_mods(app)

    r = client.get("/api/mods")
    assert r.status_code == 200
    # newest first, inactive hidden
    assert [m["title"] for m in r.json["mods"]] == ["Charlie Blocks", "Bravo Sounds", "Alpha Trees"]
    assert r.json["pagination"]["totalCount"] == 3

    r = client.get("/api/mods?sortBy=downloads&sortOrder=asc")
    assert [m["title"] for m in r.json["mods"]] == ["Alpha Trees", "Charlie Blocks", "Bravo Sounds"]

    r = client.get("/api/mods?sortBy=likes")
    assert r.json["mods"][0]["title"] == "Bravo Sounds"

    r = client.get("/api/mods?game=featuredgame&category=gameplay")
    assert [m["title"] for m in r.json["mods"]] == ["Alpha Trees"]

    r = client.get("/api/mods?search=sounds")
    assert [m["title"] for m in r.json["mods"]] == ["Bravo Sounds"]

    r = client.get("/api/mods?limit=2&page=2")
    assert len(r.json["mods"]) == 1
    assert r.json["pagination"] == {
        "currentPage": 2,
        "totalPages": 2,
        "totalCount": 3,
        "hasNextPage": False,
        "hasPreviousPage": True,
    }

    assert client.get("/api/mods?sortBy=popularity").status_code == 400
    assert client.get("/api/mods?sortOrder=sideways").status_code == 400


def test_detail_counts_views_and_hides_inactive(app, client):
    ids = _seed_mods(app)

    r = client.get(f"/api/mods/{ids['Alpha Trees']}")
    assert r.status_code == 200
    assert r.json["stats"]["views"] == 1
    r = client.get(f"/api/mods/{ids['Alpha Trees']}")
    assert r.json["stats"]["views"] == 2

    assert client.get(f"/api/mods/{ids['Delta Hidden']}").status_code == 404
    assert client.get("/api/mods/9999").status_code == 404

    # the author still sees it
    _login(client, "bob")
    assert client.get(f"/api/mods/{ids['Delta Hidden']}").status_code == 200


def test_detail_by_slug(app, client):
    ids = _seed_mods(app)

    r = client.get("/api/mods/slug/alpha-trees")
    assert r.status_code == 200
    assert r.json["id"] == ids["Alpha Trees"]
    assert r.json["stats"]["views"] == 1
    assert client.get("/api/mods/slug/alpha-trees").json["stats"]["views"] == 2

    assert client.get("/api/mods/slug/no-such-mod").status_code == 404
    assert client.get("/api/mods/slug/delta-hidden").status_code == 404

    _login(client, "alice")
    assert client.get("/api/mods/slug/delta-hidden").status_code == 404
    _login(client, "bob")
    assert client.get("/api/mods/slug/delta-hidden").status_code == 200


def test_like_toggle(app, client):
    ids = _seed_mods(app)
    mod_id = ids["Charlie Blocks"]
    assert client.post(f"/api/mods/{mod_id}/like").status_code == 401

    _login(client)
    r = client.post(f"/api/mods/{mod_id}/like")
    assert r.json == {"liked": True, "likes": 2}
    r = client.post(f"/api/mods/{mod_id}/like")
    assert r.json == {"liked": False, "likes": 1}


def test_rating_is_average_of_user_ratings(app):
    ids = _seed_mods(app)
    mod_id = ids["Alpha Trees"]
    alice, bob = app.test_client(), app.test_client()
    _login(alice, "alice")
    _login(bob, "bob")

    assert alice.post(f"/api/mods/{mod_id}/rating", json={"rating": 5}).json == {"rating": 5.0, "ratingCount": 1}
    assert bob.post(f"/api/mods/{mod_id}/rating", json={"rating": 2, "review": "meh"}).json == {
        "rating": 3.5,
        "ratingCount": 2,
    }
    # re-rating replaces the earlier vote
    assert bob.post(f"/api/mods/{mod_id}/rating", json={"rating": 4}).json == {"rating": 4.5, "ratingCount": 2}

    assert alice.post(f"/api/mods/{mod_id}/rating", json={"rating": 6}).status_code == 400
    assert alice.post(f"/api/mods/{mod_id}/rating", json={"rating": "many"}).status_code == 400


def test_download_prefers_main_file(app, client):
    ids = _seed_mods(app)
    mod_id = ids["Bravo Sounds"]

    r = client.post(f"/api/mods/{mod_id}/download")
    assert r.status_code == 404

    with session_scope(app) as s:
        s.get(Mod, mod_id).download_url = "https://cdn.example.com/legacy.zip"
    r = client.post(f"/api/mods/{mod_id}/download")
    assert r.json == {"downloadUrl": "https://cdn.example.com/legacy.zip", "totalDownloads": 51}

    with session_scope(app) as s:
        s.add_all(
            [
                ModFile(mod_id=mod_id, file_name="old.zip", file_url="/files/old.zip", is_main_file=False),
                ModFile(mod_id=mod_id, file_name="main.zip", file_url="/files/main.zip", is_main_file=True),
                ModFile(mod_id=mod_id, file_name="pending.zip", file_url=""),
            ]
        )
        s.flush()
        old_id = s.query(ModFile).filter(ModFile.file_name == "old.zip").one().id
        pending_id = s.query(ModFile).filter(ModFile.file_name == "pending.zip").one().id

    _login(client)
    r = client.post(f"/api/mods/{mod_id}/download")
    assert r.json["downloadUrl"] == "/files/main.zip"
    r = client.post(f"/api/mods/{mod_id}/download", json={"fileId": old_id})
    assert r.json == {"downloadUrl": "/files/old.zip", "totalDownloads": 53}
    assert client.post(f"/api/mods/{mod_id}/download", json={"fileId": pending_id}).status_code == 404

    with session_scope(app) as s:
        downloads = s.query(UserModDownload).filter(UserModDownload.mod_id == mod_id).all()
        assert len(downloads) == 3
        assert downloads[0].user_id is None
        assert downloads[-1].file_id == old_id
        assert s.get(ModFile, old_id).download_count == 1


def test_featured_mods_ordered_by_rating(app, client):
    ids = _seed_mods(app)
    with session_scope(app) as s:
        for title in ("Alpha Trees", "Charlie Blocks", "Delta Hidden"):
            s.get(Mod, ids[title]).is_featured = True

    r = client.get("/api/featured-mods")
    assert r.status_code == 200
    assert [m["title"] for m in r.json["mods"]] == ["Charlie Blocks", "Alpha Trees"]
    assert len(client.get("/api/featured-mods?limit=1").json["mods"]) == 1


def test_author_mods(app, client):
    _seed_mods(app)
    r = client.get("/api/authors/bob/mods")
    assert r.status_code == 200
    assert r.json["author"]["username"] == "bob"
    assert [m["title"] for m in r.json["mods"]] == ["Charlie Blocks"]

    r = client.get("/api/authors/alice/mods?game=featuredgame")
    assert [m["title"] for m in r.json["mods"]] == ["Bravo Sounds", "Alpha Trees"]

    assert client.get("/api/authors/nobody/mods").status_code == 404


def test_games_and_categories(app, client):
    _seed_mods(app)
    r = client.get("/api/games")
    assert r.status_code == 200
    games = {g["slug"]: g for g in r.json["games"]}
    assert set(games) == {"featuredgame", "minecraft"}
    assert games["featuredgame"]["modCount"] == 2
    assert "formSchema" not in games["featuredgame"]

    r = client.get("/api/games/featuredgame")
    assert [f["id"] for f in r.json["game"]["formSchema"]] == ["loader", "notes"]
    assert client.get("/api/games/retired").status_code == 404

    r = client.get("/api/categories")
    assert [c["name"] for c in r.json["categories"]] == ["Audio", "Gameplay"]
