from __future__ import annotations

import uuid
from dataclasses import replace
from tempfile import SpooledTemporaryFile
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.api.publications import router as publications_router
from app.api.storage import router as storage_router
from app.db import get_db
from app.errors import register_error_handlers
from app.schemas.publication import PublicationUploadMetadata
from app.services.auth import issue_access_token
from app.services.file_upload import UploadedPublicationFile
from app.services.publications import publication_uploads


def _build_app() -> FastAPI:
    app = FastAPI()
    register_error_handlers(app)
    app.include_router(publications_router, prefix="/api")
    app.include_router(storage_router, prefix="/api")
    return app


@pytest.fixture()
def client(db_session, upload_config, local_storage, monkeypatch):
    monkeypatch.setattr(publication_uploads, "config", upload_config)
    monkeypatch.setattr(publication_uploads, "storage", local_storage)

    app = _build_app()

    def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    return TestClient(app, raise_server_exceptions=False)


def _auth(user) -> dict:
    return {"Authorization": f"Bearer {issue_access_token(str(user.id))}"}


def _create(db_session, user, filename: str, data: bytes, title: str = "Stored"):
    return publication_uploads.process(
        db_session,
        PublicationUploadMetadata(title=title),
        UploadedPublicationFile(filename=filename, content_type="application/pdf", data=data),
        user.id,
    )


def test_upload_returns_created_record(client, user, local_storage, pdf_bytes):
    resp = client.post(
        "/api/publications",
        headers=_auth(user),
        data={"title": "Quarterly", "description": "Third quarter"},
        files={"file": ("report-2023-07-220005.pdf", pdf_bytes, "application/pdf")},
    )

    assert resp.status_code == 201
    body = resp.json()
    assert body["file_path"] == "publications/report/2023/07/22/report-2023-07-220005.pdf"
    assert body["title"] == "Quarterly"
    assert body["description"] == "Third quarter"
    assert body["page"] == 5
    assert body["user_id"] == str(user.id)
    assert local_storage.download(body["file_path"]) == pdf_bytes


def test_upload_form_fields_override_filename(client, user, pdf_bytes):
    resp = client.post(
        "/api/publications",
        headers=_auth(user),
        data={"title": "Override", "name": "Annual", "year": "2020", "month": "1", "day": "2"},
        files={"file": ("report-2023-07-22.pdf", pdf_bytes, "application/pdf")},
    )

    assert resp.status_code == 201
    assert resp.json()["file_path"] == "publications/annual/2020/01/02/report-2023-07-22.pdf"


def test_upload_rejects_disallowed_type(client, user, local_storage):
    resp = client.post(
        "/api/publications",
        headers=_auth(user),
        data={"title": "Picture"},
        files={"file": ("photo.png", b"\x89PNG\r\n", "image/png")},
    )

    assert resp.status_code == 422
    body = resp.json()
    assert body["code"] == "invalid_file"
    assert "File type not allowed" in body["message"]
    assert local_storage.list_keys("publications/") == []


def test_upload_reads_at_most_one_byte_past_limit(
    client, user, upload_config, local_storage, pdf_bytes, monkeypatch
):
    monkeypatch.setattr(
        publication_uploads, "config", replace(upload_config, max_size_bytes=1024)
    )
    read_sizes = []
    original_read = SpooledTemporaryFile.read

    def _recording_read(self, *args):
        read_sizes.append(args[0] if args else -1)
        return original_read(self, *args)

    monkeypatch.setattr(SpooledTemporaryFile, "read", _recording_read)

    resp = client.post(
        "/api/publications",
        headers=_auth(user),
        data={"title": "Too big"},
        files={"file": ("big-2023-07-22.pdf", pdf_bytes + b"0" * 8192, "application/pdf")},
    )

    assert resp.status_code == 422
    body = resp.json()
    assert body["code"] == "invalid_file"
    assert "exceeds the maximum allowed size of 1KB" in body["message"]
    assert 1025 in read_sizes
    assert local_storage.list_keys("publications/") == []


def test_upload_requires_title(client, user, pdf_bytes):
    resp = client.post(
        "/api/publications",
        headers=_auth(user),
        files={"file": ("report.pdf", pdf_bytes, "application/pdf")},
    )
    assert resp.status_code == 422
    assert resp.json()["code"] == "validation_error"


def test_upload_rejects_invalid_month(client, user, pdf_bytes):
    resp = client.post(
        "/api/publications",
        headers=_auth(user),
        data={"title": "Bad month", "month": "13"},
        files={"file": ("report.pdf", pdf_bytes, "application/pdf")},
    )
    assert resp.status_code == 422
    assert resp.json()["code"] == "validation_error"


def test_background_upload_returns_accepted(client, user, pdf_bytes, monkeypatch):
    apply_async = MagicMock(return_value=SimpleNamespace(id="task-42"))
    monkeypatch.setattr(
        "app.tasks.publications.process_publication_upload.apply_async", apply_async
    )

    resp = client.post(
        "/api/publications",
        headers=_auth(user),
        data={"title": "Later", "background": "true"},
        files={"file": ("report-2023-07-22.pdf", pdf_bytes, "application/pdf")},
    )

    assert resp.status_code == 202
    assert resp.json() == {
        "message": "File upload has been queued for processing",
        "status": "queued",
        "task_id": "task-42",
    }
    apply_async.assert_called_once()


def test_requires_bearer_token(client):
    resp = client.get("/api/publications")
    assert resp.status_code == 401


def test_rejects_token_for_unknown_user(client):
    headers = {"Authorization": f"Bearer {issue_access_token(str(uuid.uuid4()))}"}
    resp = client.get("/api/publications", headers=headers)
    assert resp.status_code == 401


def test_list_filters_and_paginates(client, db_session, user, other_user, pdf_bytes):
    _create(db_session, user, "report-2022-01-05.pdf", pdf_bytes)
    _create(db_session, user, "report-2023-07-22.pdf", pdf_bytes)
    _create(db_session, user, "bulletin-2023-07-01.pdf", pdf_bytes)
    _create(db_session, other_user, "memo-2023-07-15.pdf", pdf_bytes)

    resp = client.get("/api/publications", headers=_auth(user), params={"year": 2023, "month": 7})
    assert resp.status_code == 200
    body = resp.json()
    assert body["count"] == 2
    assert [item["original_filename"] for item in body["items"]] == [
        "report-2023-07-22.pdf",
        "bulletin-2023-07-01.pdf",
    ]

    resp = client.get("/api/publications", headers=_auth(user), params={"limit": 1, "offset": 2})
    assert [item["original_filename"] for item in resp.json()["items"]] == [
        "report-2022-01-05.pdf"
    ]


def test_list_rejects_invalid_month(client, user):
    resp = client.get("/api/publications", headers=_auth(user), params={"month": 13})
    assert resp.status_code == 422


def test_get_and_download(client, db_session, user, pdf_bytes):
    record = _create(db_session, user, "report-2023-07-22.pdf", pdf_bytes)

    resp = client.get(f"/api/publications/{record.id}", headers=_auth(user))
    assert resp.status_code == 200
    assert resp.json()["id"] == str(record.id)

    resp = client.get(f"/api/publications/{record.id}/download", headers=_auth(user))
    assert resp.status_code == 200
    assert resp.content == pdf_bytes
    assert resp.headers["content-type"] == "application/pdf"
    assert 'filename="report-2023-07-22.pdf"' in resp.headers["content-disposition"]


def test_other_user_cannot_read_or_delete(client, db_session, user, other_user, pdf_bytes):
    record = _create(db_session, user, "report-2023-07-22.pdf", pdf_bytes)

    resp = client.get(f"/api/publications/{record.id}", headers=_auth(other_user))
    assert resp.status_code == 403
    assert resp.json()["code"] == "forbidden"

    resp = client.delete(f"/api/publications/{record.id}", headers=_auth(other_user))
    assert resp.status_code == 403


def test_delete_then_not_found(client, db_session, user, local_storage, pdf_bytes):
    record = _create(db_session, user, "report-2023-07-22.pdf", pdf_bytes)
    key = record.file_path

    resp = client.delete(f"/api/publications/{record.id}", headers=_auth(user))
    assert resp.status_code == 200
    assert resp.json() == {"message": "Publication deleted successfully"}
    assert local_storage.exists(key) is False

    resp = client.delete(f"/api/publications/{record.id}", headers=_auth(user))
    assert resp.status_code == 404
    assert resp.json()["code"] == "not_found"


def test_unknown_publication_is_not_found(client, user):
    resp = client.get(f"/api/publications/{uuid.uuid4()}", headers=_auth(user))
    assert resp.status_code == 404


def test_storage_check(client, user):
    resp = client.get("/api/storage/check", headers=_auth(user))
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["key"].startswith("storage-checks/")
