"""
tests/test_uploads.py -- Tests for uploads/validator.py and POST /api/v1/uploads.

Covers:
  - 6 MB declared size against a 5 MB limit -> SIZE_EXCEEDED, nothing written
  - type not in the allow-list -> TYPE_REJECTED; empty allow-list rejects all
  - transport error / missing file -> UPLOAD_ERROR, checked before type
  - stored name is <32 hex>_<sanitized name> and matches the safe pattern
  - an existing target is never overwritten (STORAGE_FAILURE)
  - API: role gate, 201 envelope, 413/415 reasons, activity entry written
"""

from __future__ import annotations

import io
import re

import pytest

from conftest import login_as
from uploads.validator import (
    IncomingFile,
    UploadFailure,
    generate_unique_filename,
    validate_and_store,
    validate_upload,
)

MB = 1024 * 1024
IMAGE_TYPES = ["image/jpeg", "image/png", "image/gif"]
STORED_NAME_RE = re.compile(r"^[0-9a-f]{32}_[A-Za-z0-9._-]+$")


def _incoming(
    filename: str = "cover.png",
    content_type: str = "image/png",
    payload: bytes = b"\x89PNG data",
    size: int | None = None,
    error: str | None = None,
) -> IncomingFile:
    return IncomingFile(
        filename=filename,
        content_type=content_type,
        size=len(payload) if size is None else size,
        stream=io.BytesIO(payload),
        error=error,
    )


# ---------------------------------------------------------------------------
# validate_upload / validate_and_store
# ---------------------------------------------------------------------------


def test_six_mb_file_against_five_mb_limit_is_rejected(tmp_path):
    target = tmp_path / "uploads"
    result = validate_and_store(_incoming(size=6 * MB), IMAGE_TYPES, 5 * MB, target)
    assert result.ok is False
    assert result.failure is UploadFailure.SIZE_EXCEEDED
    assert result.message == "File too large."
    assert not target.exists()


def test_size_exactly_at_limit_is_accepted(tmp_path):
    result = validate_and_store(_incoming(size=5 * MB), IMAGE_TYPES, 5 * MB, tmp_path)
    assert result.ok is True


def test_type_not_allowed(tmp_path):
    result = validate_and_store(_incoming(filename="x.pdf", content_type="application/pdf"), IMAGE_TYPES, MB, tmp_path)
    assert result.failure is UploadFailure.TYPE_REJECTED
    assert list(tmp_path.iterdir()) == []


def test_empty_allow_list_rejects_everything():
    assert validate_upload(_incoming(), [], MB) is UploadFailure.TYPE_REJECTED


def test_upload_error_is_checked_first():
    failure = validate_upload(_incoming(content_type="text/html", size=10 * MB, error="partial"), IMAGE_TYPES, MB)
    assert failure is UploadFailure.UPLOAD_ERROR


def test_type_is_checked_before_size():
    failure = validate_upload(_incoming(content_type="text/html", size=10 * MB), IMAGE_TYPES, MB)
    assert failure is UploadFailure.TYPE_REJECTED


def test_missing_file_is_upload_error():
    assert validate_upload(IncomingFile.from_upload(None), IMAGE_TYPES, MB) is UploadFailure.UPLOAD_ERROR


def test_successful_store_writes_content(tmp_path):
    result = validate_and_store(_incoming(filename="My File!@#.PNG", payload=b"abc"), IMAGE_TYPES, MB, tmp_path)
    assert result.ok is True
    asset = result.asset
    assert STORED_NAME_RE.match(asset.stored_name)
    assert asset.stored_name.endswith("_My_File.PNG")
    assert asset.path == tmp_path / asset.stored_name
    assert asset.path.read_bytes() == b"abc"
    assert asset.original_name == "My File!@#.PNG"


def test_path_traversal_name_stays_inside_directory(tmp_path):
    result = validate_and_store(_incoming(filename="../../etc/passwd.png"), IMAGE_TYPES, MB, tmp_path)
    assert result.ok is True
    assert result.asset.path.parent == tmp_path
    assert STORED_NAME_RE.match(result.asset.stored_name)


def test_existing_target_is_not_overwritten(tmp_path, monkeypatch):
    (tmp_path / "fixed_cover.png").write_bytes(b"original")
    monkeypatch.setattr("uploads.validator.generate_unique_filename", lambda name: "fixed_cover.png")
    result = validate_and_store(_incoming(), IMAGE_TYPES, MB, tmp_path)
    assert result.failure is UploadFailure.STORAGE_FAILURE
    assert (tmp_path / "fixed_cover.png").read_bytes() == b"original"


@pytest.mark.parametrize(
    "original, suffix",
    [
        ("photo.jpg", "_photo.jpg"),
        ("../../secret", "_secret"),
        ("!!!", "_upload"),
        ("", "_upload"),
    ],
)
def test_generate_unique_filename(original, suffix):
    name = generate_unique_filename(original)
    assert STORED_NAME_RE.match(name)
    assert name.endswith(suffix)


def test_generate_unique_filename_is_unique():
    assert generate_unique_filename("a.png") != generate_unique_filename("a.png")


# ---------------------------------------------------------------------------
# POST /api/v1/uploads
# ---------------------------------------------------------------------------


def test_upload_requires_login(client):
    from conftest import csrf_headers

    resp = client.post(
        "/api/v1/uploads",
        files={"file": ("a.png", b"x", "image/png")},
        headers=csrf_headers(client),
    )
    assert resp.status_code == 401


def test_reader_cannot_upload(client, make_user):
    token = login_as(client, make_user(role="reader"))
    resp = client.post(
        "/api/v1/uploads",
        files={"file": ("a.png", b"x", "image/png")},
        headers={"X-CSRF-Token": token},
    )
    assert resp.status_code == 403


def test_author_upload_succeeds(client, make_user, stores):
    author = make_user(role="author")
    token = login_as(client, author)
    resp = client.post(
        "/api/v1/uploads",
        files={"file": ("cover image.png", b"\x89PNG...", "image/png")},
        headers={"X-CSRF-Token": token},
    )
    assert resp.status_code == 201, resp.json()
    body = resp.json()
    assert body["success"] is True
    assert body["data"]["size"] == len(b"\x89PNG...")
    assert body["data"]["stored_name"].endswith("_cover_image.png")

    stored = client.app.state.upload_dir / body["data"]["stored_name"]
    assert stored.read_bytes() == b"\x89PNG..."

    entries, _ = stores[2].list_activity(user_id=author.id)
    assert entries[0].action == "upload"


def test_upload_wrong_type_is_415(client, make_user):
    token = login_as(client, make_user(role="editor"))
    resp = client.post(
        "/api/v1/uploads",
        files={"file": ("notes.txt", b"hello", "text/plain")},
        headers={"X-CSRF-Token": token},
    )
    assert resp.status_code == 415
    assert resp.json()["data"]["reason"] == "type_rejected"


def test_upload_too_large_is_413_and_nothing_written(client, make_user, monkeypatch):
    from api.routes.v1 import uploads as uploads_module

    real = uploads_module.get_settings()
    monkeypatch.setattr(
        uploads_module, "get_settings", lambda: real.model_copy(update={"max_upload_bytes": 10})
    )
    token = login_as(client, make_user(role="editor"))
    resp = client.post(
        "/api/v1/uploads",
        files={"file": ("big.png", b"x" * 11, "image/png")},
        headers={"X-CSRF-Token": token},
    )
    assert resp.status_code == 413
    assert resp.json()["data"]["reason"] == "size_exceeded"
    upload_dir = client.app.state.upload_dir
    assert not upload_dir.exists() or list(upload_dir.iterdir()) == []


def test_upload_without_file_is_400(client, make_user):
    token = login_as(client, make_user(role="author"))
    resp = client.post("/api/v1/uploads", data={"caption": "no file"}, headers={"X-CSRF-Token": token})
    assert resp.status_code == 400
    assert resp.json()["data"]["reason"] == "upload_error"
