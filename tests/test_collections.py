import pytest
from werkzeug.security import generate_password_hash

from app.modhub import create_app
from app.modhub.db import session_scope
from app.modhub.models import Base, User
from app.modhub.modules.catalog.models import Category, Game
from app.modhub.modules.collections.models import Collection, CollectionMod
from app.modhub.modules.mods.models import Mod


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
        alice = User(username="alice", email="alice@example.com", password_hash=generate_password_hash("password1"))
        bob = User(username="bob", email="bob@example.com", password_hash=generate_password_hash("password1"))
        game = Game(name="Minecraft", slug="minecraft", is_active=True)
        category = Category(name="Gameplay", slug="gameplay")
        s.add_all([alice, bob, game, category])
        s.flush()
        for title, active in (("One", True), ("Two", True), ("Three", True), ("Hidden", False)):
            s.add(
                Mod(
                    title=title,
                    slug=title.lower(),
                    description=title,
                    author_id=bob.id,
                    game_id=game.id,
                    category_id=category.id,
                    is_active=active,
                )
            )
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client, username="alice"):
    r = client.post("/api/auth/login", json={"username": username, "password": "password1"})
    assert r.status_code == 200


def _mod_ids(app) -> dict[str, int]:
    with session_scope(app) as s:
        return {m.title: m.id for m in s.query(Mod)}


def _create(client, **payload):
    r = client.post("/api/user/collections", json={"name": "Favourites", **payload})
    assert r.status_code == 201
    return r.json["collection"]["id"]


def test_requires_login(client):
    assert client.get("/api/user/collections").status_code == 401
    assert client.post("/api/user/collections", json={"name": "x"}).status_code == 401


def test_create_update_delete(app, client):
    _login(client)
    r = client.post("/api/user/collections", json={"name": "  "})
    assert r.status_code == 400

    cid = _create(client, description="Best of", isPublic=True)
    r = client.get("/api/user/collections")
    assert [c["name"] for c in r.json["collections"]] == ["Favourites"]
    assert r.json["collections"][0]["isPublic"] is True
    assert r.json["collections"][0]["user"]["username"] == "alice"

    r = client.put(f"/api/user/collections/{cid}", json={"name": "Renamed", "isPublic": False})
    assert r.status_code == 200
    assert r.json["collection"]["name"] == "Renamed"
    assert r.json["collection"]["isPublic"] is False
    assert client.put(f"/api/user/collections/{cid}", json={}).status_code == 400

    assert client.delete(f"/api/user/collections/{cid}").status_code == 200
    with session_scope(app) as s:
        assert s.get(Collection, cid) is None


def test_other_users_cannot_modify(app, client):
    _login(client)
    cid = _create(client)

    other = app.test_client()
    _login(other, "bob")
    assert other.put(f"/api/user/collections/{cid}", json={"name": "Mine"}).status_code == 404
    assert other.delete(f"/api/user/collections/{cid}").status_code == 404
    r = other.post("/api/user/collections/mods", json={"collectionId": cid, "modId": _mod_ids(app)["One"]})
    assert r.status_code == 404


def test_private_collection_is_hidden(app, client):
    _login(client)
    private_id = _create(client, name="Secret")
    public_id = _create(client, name="Shared", isPublic=True)

    assert client.get(f"/api/collections/{private_id}").status_code == 200

    anon = app.test_client()
    assert anon.get(f"/api/collections/{private_id}").status_code == 404
    assert anon.get(f"/api/collections/{public_id}").status_code == 200

    r = anon.get("/api/collections")
    assert [c["name"] for c in r.json["collections"]] == ["Shared"]
    assert r.json["pagination"]["totalCount"] == 1


def test_add_reorder_remove_mods(app, client):
    ids = _mod_ids(app)
    _login(client)
    cid = _create(client, isPublic=True)

    for title in ("One", "Two", "Three", "Hidden"):
        r = client.post("/api/user/collections/mods", json={"collectionId": cid, "modId": ids[title]})
        assert r.status_code == 200

    r = client.post("/api/user/collections/mods", json={"collectionId": cid, "modId": ids["One"]})
    assert r.status_code == 400
    assert r.json["error"] == "Mod is already in this collection"
    assert client.post("/api/user/collections/mods", json={"collectionId": cid, "modId": 9999}).status_code == 404
    assert client.post("/api/user/collections/mods", json={"collectionId": cid}).status_code == 400

    r = client.get(f"/api/collections/{cid}")
    # inactive mods by other authors are left out
    assert [e["mod"]["title"] for e in r.json["mods"]] == ["One", "Two", "Three"]
    assert [e["order"] for e in r.json["mods"]] == [0, 1, 2]
    assert r.json["collection"]["modCount"] == 4

    r = client.put(
        "/api/user/collections/mods",
        json={"collectionId": cid, "order": [ids["Three"], ids["One"], ids["Two"]]},
    )
    assert r.status_code == 200
    r = client.get(f"/api/collections/{cid}")
    assert [e["mod"]["title"] for e in r.json["mods"]] == ["Three", "One", "Two"]

    assert client.put("/api/user/collections/mods", json={"collectionId": cid, "order": "1,2"}).status_code == 400

    r = client.delete("/api/user/collections/mods", json={"collectionId": cid, "modId": ids["One"]})
    assert r.status_code == 200
    with session_scope(app) as s:
        remaining = {e.mod_id for e in s.query(CollectionMod).filter(CollectionMod.collection_id == cid)}
        assert remaining == {ids["Two"], ids["Three"], ids["Hidden"]}


def test_deleting_mod_drops_it_from_collections(app, client):
    ids = _mod_ids(app)
    _login(client)
    cid = _create(client)
    client.post("/api/user/collections/mods", json={"collectionId": cid, "modId": ids["Two"]})

    with session_scope(app) as s:
        s.delete(s.get(Mod, ids["Two"]))

    with session_scope(app) as s:
        assert s.query(CollectionMod).filter(CollectionMod.collection_id == cid).count() == 0
