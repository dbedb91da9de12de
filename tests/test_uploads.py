import io
from urllib.parse import urlsplit

import pytest
from werkzeug.security import generate_password_hash

from app.modhub import create_app
from app.modhub.client.uploader import PresignedUploader
from app.modhub.db import session_scope
from app.modhub.models import Base, SystemSettings, User
from app.modhub.modules.catalog.models import Category, Game
from app.modhub.modules.mods.models import Mod, ModFile, ModImage
from app.modhub.storage import storage_from_config

MB = 1024 * 1024


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
        game = Game(name="Featured Game", slug="featuredgame", is_active=True)
        other = Game(name="Minecraft", slug="minecraft", is_active=True)
        category = Category(name="Gameplay", slug="gameplay")
        s.add_all([alice, bob, game, other, category])
        s.flush()
        s.add(
            Mod(
                title="Better Trees",
                slug="better-trees",
                description="Trees, but better.",
                author_id=alice.id,
                game_id=game.id,
                category_id=category.id,
            )
        )
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client, username="alice"):
    r = client.post("/api/auth/login", json={"username": username, "password": "password1"})
    assert r.status_code == 200


def _mod_id(app) -> int:
    with session_scope(app) as s:
        return s.query(Mod).filter(Mod.slug == "better-trees").one().id


def _presign(client, mod_id, *, file_type="mod", file_name="trees.zip", content_type="application/zip", game="featuredgame"):
    return client.post(
        "/api/upload/presigned-url",
        json={
            "gameSlug": game,
            "modId": mod_id,
            "fileType": file_type,
            "fileName": file_name,
            "contentType": content_type,
        },
    )


def _put(client, presigned_url, body, content_type):
    return client.put(presigned_url, data=body, content_type=content_type)


def test_storage_status_and_upload_info(client):
    r = client.get("/api/storage/status")
    assert r.status_code == 200
    assert r.json == {"configured": True, "endpointType": "Local filesystem"}

    r = client.get("/api/upload")
    assert r.json["message"] == "Upload endpoint is ready"
    assert r.json["storage"]["configured"] is True


def test_presigned_flow_for_mod_file(app, client):
    _login(client)
    mod_id = _mod_id(app)

    r = _presign(client, mod_id)
    assert r.status_code == 200
    record_id = r.json["recordId"]
    key = r.json["storageKey"]
    assert key == f"mods/featuredgame/{mod_id}/{record_id}_trees.zip"
    assert r.json["presignedUrl"].startswith("/api/storage/local/put/")

    body = b"PK" + b"\0" * 2046
    assert _put(client, r.json["presignedUrl"], body, "application/zip").status_code == 200

    r = client.post(
        "/api/upload/finalize",
        json={"recordId": record_id, "fileType": "mod", "storageKey": key, "fileSize": len(body)},
    )
    assert r.status_code == 200
    assert r.json == {"success": True, "url": f"/api/storage/local/files/{key}"}

    with session_scope(app) as s:
        f = s.get(ModFile, record_id)
        assert f.file_size == len(body)
        assert f.is_main_file is True
        mod = s.get(Mod, mod_id)
        assert mod.download_url == f"/api/storage/local/files/{key}"
        assert mod.size == "2 KB"

    r = client.get(f"/api/storage/local/files/{key}")
    assert r.status_code == 200
    assert r.data == body


def test_presigned_image_sets_main_image(app, client):
    _login(client)
    mod_id = _mod_id(app)

    r = _presign(client, mod_id, file_type="image", file_name="shot.png", content_type="image/png")
    assert r.status_code == 200
    key = r.json["storageKey"]
    assert key.startswith(f"images/featuredgame/{mod_id}/")
    _put(client, r.json["presignedUrl"], b"\x89PNG", "image/png")
    r = client.post(
        "/api/upload/finalize",
        json={"recordId": r.json["recordId"], "fileType": "image", "storageKey": key, "fileSize": 4},
    )
    assert r.status_code == 200

    with session_scope(app) as s:
        mod = s.get(Mod, mod_id)
        assert mod.image_url == r.json["url"]
        assert [i.is_main for i in mod.images] == [True]


def test_presign_validation(app, client):
    mod_id = _mod_id(app)
    assert _presign(client, mod_id).status_code == 401

    _login(client)
    r = client.post("/api/upload/presigned-url", json={"gameSlug": "featuredgame"})
    assert r.status_code == 400
    assert r.json["error"] == "Missing required fields"

    assert _presign(client, mod_id, file_type="video").status_code == 400
    assert _presign(client, mod_id, game="minecraft").status_code == 400
    assert _presign(client, mod_id, file_type="image", content_type="application/zip").status_code == 400
    assert _presign(client, 9999).status_code == 404


def test_presign_requires_ownership(app, client):
    _login(client, "bob")
    r = _presign(client, _mod_id(app))
    assert r.status_code == 403


def test_image_count_limit(app, client):
    with session_scope(app) as s:
        SystemSettings.load(s).max_images_per_mod = 1
    _login(client)
    mod_id = _mod_id(app)
    assert _presign(client, mod_id, file_type="image", file_name="a.png", content_type="image/png").status_code == 200
    r = _presign(client, mod_id, file_type="image", file_name="b.png", content_type="image/png")
    assert r.status_code == 400
    assert "at most 1 images" in r.json["error"]


def test_local_put_checks_token_and_content_type(app, client):
    _login(client)
    r = _presign(client, _mod_id(app))
    url = r.json["presignedUrl"]

    assert _put(client, url, b"data", "text/plain").status_code == 400
    assert _put(client, "/api/storage/local/put/not-a-token", b"data", "application/zip").status_code == 403

    # a GET token cannot be used to upload
    storage = storage_from_config(app.config)
    get_token = storage.presign_get(r.json["storageKey"]).rsplit("/", 1)[-1]
    assert _put(client, f"/api/storage/local/put/{get_token}", b"data", "application/zip").status_code == 403


def test_finalize_rejects_wrong_key_and_missing_object(app, client):
    _login(client)
    r = _presign(client, _mod_id(app))
    record_id, key = r.json["recordId"], r.json["storageKey"]

    r = client.post(
        "/api/upload/finalize",
        json={"recordId": record_id, "fileType": "mod", "storageKey": "mods/elsewhere/1/x.zip", "fileSize": 10},
    )
    assert r.status_code == 400
    assert "does not match" in r.json["error"]

    r = client.post(
        "/api/upload/finalize",
        json={"recordId": record_id, "fileType": "mod", "storageKey": key, "fileSize": 10},
    )
    assert r.status_code == 400
    assert r.json["error"] == "Uploaded object not found in storage"

    r = client.post(
        "/api/upload/finalize",
        json={"recordId": 9999, "fileType": "mod", "storageKey": key, "fileSize": 10},
    )
    assert r.status_code == 404


def test_finalize_over_limit_deletes_record_and_object(app, client):
    with session_scope(app) as s:
        SystemSettings.load(s).max_mod_file_size = 1
    _login(client)
    r = _presign(client, _mod_id(app))
    record_id, key = r.json["recordId"], r.json["storageKey"]
    _put(client, r.json["presignedUrl"], b"x" * 16, "application/zip")

    r = client.post(
        "/api/upload/finalize",
        json={"recordId": record_id, "fileType": "mod", "storageKey": key, "fileSize": 2 * MB},
    )
    assert r.status_code == 400
    assert r.json["error"] == "File too large. Maximum size is 1MB"

    with session_scope(app) as s:
        assert s.get(ModFile, record_id) is None
    assert not storage_from_config(app.config).exists(key)


def test_total_image_size_limit(app, client):
    with session_scope(app) as s:
        SystemSettings.load(s).max_total_image_size = 1
    _login(client)
    r = _presign(client, _mod_id(app), file_type="image", file_name="big.png", content_type="image/png")
    record_id, key = r.json["recordId"], r.json["storageKey"]
    _put(client, r.json["presignedUrl"], b"\x89PNG", "image/png")

    r = client.post(
        "/api/upload/finalize",
        json={"recordId": record_id, "fileType": "image", "storageKey": key, "fileSize": MB + 1},
    )
    assert r.status_code == 400
    with session_scope(app) as s:
        assert s.get(ModImage, record_id) is None


def test_direct_upload(app, client):
    r = client.post("/api/upload", data={"file": (io.BytesIO(b"hello"), "notes.txt")}, content_type="multipart/form-data")
    assert r.status_code == 401

    _login(client)
    r = client.post("/api/upload", data={"file": (io.BytesIO(b"hello"), "notes.txt")}, content_type="multipart/form-data")
    assert r.status_code == 200
    assert r.json["success"] is True
    assert r.json["fileSize"] == 5
    assert r.json["fileName"] == "notes.txt"
    assert r.json["fileKey"].startswith("users/")
    assert r.json["fileKey"].endswith("-notes.txt")
    assert storage_from_config(app.config).exists(r.json["fileKey"])

    r = client.post("/api/upload", data={}, content_type="multipart/form-data")
    assert r.status_code == 400
    assert r.json["error"] == "No file provided"


def test_mod_file_upload_checks_extension(client):
    _login(client)
    r = client.post(
        "/api/upload/mod-file",
        data={"file": (io.BytesIO(b"MZ"), "trainer.exe"), "modId": "5"},
        content_type="multipart/form-data",
    )
    assert r.status_code == 400
    assert r.json["error"].startswith("Invalid file type")

    r = client.post(
        "/api/upload/mod-file",
        data={"file": (io.BytesIO(b"PK"), "pack.zip"), "modId": "5"},
        content_type="multipart/form-data",
    )
    assert r.status_code == 200
    assert r.json["modId"] == 5
    assert r.json["fileKey"].endswith("-pack.zip")


def test_image_upload(app, client):
    _login(client)
    r = client.post(
        "/api/upload/image",
        data={"file": (io.BytesIO(b"GIF89a"), "anim.gif", "image/gif")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 200
    assert r.json["imageUrl"] == r.json["fileUrl"]
    assert r.json["fileKey"].startswith("images/")
    assert r.json["fileKey"].endswith("_anim.gif")

    r = client.post(
        "/api/upload/image",
        data={"file": (io.BytesIO(b"%PDF"), "doc.pdf", "application/pdf")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 400


def test_uploads_answer_503_without_storage(app, client):
    _login(client)
    app.config.update({"STORAGE_BACKEND": "s3", "S3_BUCKET": ""})
    r = _presign(client, _mod_id(app))
    assert r.status_code == 503
    assert r.json["error"] == "Storage not configured"
    assert "S3_BUCKET_NAME" in r.json["details"]["missingVariables"]

    r = client.get("/api/storage/status")
    assert r.json["configured"] is False


class _FlaskResponse:
    def __init__(self, r):
        self.status_code = r.status_code
        self.reason = r.status
        self._r = r

    def json(self):
        return self._r.get_json()


class _FlaskSession:
    """requests.Session look-alike that routes the uploader through the Flask test client."""

    def __init__(self, client):
        self.client = client

    def post(self, url, json=None, timeout=None):
        return _FlaskResponse(self.client.post(urlsplit(url).path, json=json))

    def put(self, url, data=None, headers=None, timeout=None):
        body = b"".join(iter(lambda: data.read(1024), b""))
        return _FlaskResponse(self.client.put(urlsplit(url).path, data=body, headers=headers))


def test_uploader_against_app(app, client, tmp_path):
    _login(client)
    mod_id = _mod_id(app)
    files = []
    for name in ("part1.zip", "part2.zip"):
        p = tmp_path / name
        p.write_bytes(b"z" * 3000)
        files.append(p)

    progress = []
    uploader = PresignedUploader(
        "http://localhost",
        "featuredgame",
        mod_id,
        session=_FlaskSession(client),
        on_progress=lambda entries, overall: progress.append(overall),
    )
    entries = uploader.upload_files(files)

    assert all(e.completed for e in entries)
    assert progress[-1] == 100
    with session_scope(app) as s:
        mod = s.get(Mod, mod_id)
        assert sorted(f.file_name for f in mod.files) == ["part1.zip", "part2.zip"]
        assert sum(f.is_main_file for f in mod.files) == 1
        assert mod.size == "5.86 KB"
