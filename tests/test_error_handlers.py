from __future__ import annotations

from fastapi import APIRouter, FastAPI, HTTPException
from fastapi.testclient import TestClient

from app.errors import register_error_handlers
from app.services.file_upload import (
    FileTooLargeError,
    PublicationForbiddenError,
    PublicationNotFoundError,
    PublicationStorageError,
)


def _build_app() -> FastAPI:
    app = FastAPI()
    register_error_handlers(app)

    api_router = APIRouter(prefix="/api")

    @api_router.get("/http-409")
    def api_http_409():
        raise HTTPException(status_code=409, detail="Record already exists")

    @api_router.get("/needs-int")
    def api_needs_int(value: int):
        return {"value": value}

    @api_router.get("/too-large")
    def api_too_large():
        raise FileTooLargeError("File size exceeds the maximum allowed size of 10240KB")

    @api_router.get("/missing")
    def api_missing():
        raise PublicationNotFoundError("Publication not found")

    @api_router.get("/not-yours")
    def api_not_yours():
        raise PublicationForbiddenError("You do not own this publication")

    @api_router.get("/storage-down")
    def api_storage_down():
        raise PublicationStorageError("Failed to store file: bucket unreachable")

    @api_router.get("/crash")
    def api_crash():
        raise RuntimeError("boom")

    app.include_router(api_router)
    return app


def test_http_exception_returns_json_payload() -> None:
    client = TestClient(_build_app(), raise_server_exceptions=False)
    resp = client.get("/api/http-409")
    assert resp.status_code == 409
    assert resp.json() == {
        "code": "http_409",
        "message": "Record already exists",
        "details": None,
        "request_id": "unknown",
    }


def test_unknown_route_returns_json_404() -> None:
    client = TestClient(_build_app(), raise_server_exceptions=False)
    resp = client.get("/api/nope")
    assert resp.status_code == 404
    assert resp.json()["code"] == "http_404"


def test_request_validation_error_is_422() -> None:
    client = TestClient(_build_app(), raise_server_exceptions=False)
    resp = client.get("/api/needs-int", params={"value": "abc"})
    assert resp.status_code == 422
    body = resp.json()
    assert body["code"] == "validation_error"
    assert body["details"][0]["loc"] == ["query", "value"]


def test_publication_validation_error_is_422() -> None:
    client = TestClient(_build_app(), raise_server_exceptions=False)
    resp = client.get("/api/too-large")
    assert resp.status_code == 422
    body = resp.json()
    assert body["code"] == "invalid_file"
    assert body["message"] == "File size exceeds the maximum allowed size of 10240KB"
    assert body["details"] == {"file": [body["message"]]}


def test_not_found_and_forbidden() -> None:
    client = TestClient(_build_app(), raise_server_exceptions=False)
    assert client.get("/api/missing").status_code == 404
    assert client.get("/api/not-yours").status_code == 403


def test_storage_error_hides_detail_outside_debug(monkeypatch) -> None:
    from types import SimpleNamespace

    monkeypatch.setattr("app.errors.settings", SimpleNamespace(debug=False))
    client = TestClient(_build_app(), raise_server_exceptions=False)
    resp = client.get("/api/storage-down")
    assert resp.status_code == 500
    body = resp.json()
    assert body["message"] == "Failed to process publication"
    assert body["details"] is None


def test_unhandled_error_detail_only_in_debug(monkeypatch) -> None:
    from types import SimpleNamespace

    client = TestClient(_build_app(), raise_server_exceptions=False)

    monkeypatch.setattr("app.errors.settings", SimpleNamespace(debug=False))
    resp = client.get("/api/crash")
    assert resp.status_code == 500
    assert resp.json()["message"] == "Internal server error"
    assert resp.json()["details"] is None

    monkeypatch.setattr("app.errors.settings", SimpleNamespace(debug=True))
    resp = client.get("/api/crash")
    assert resp.status_code == 500
    assert resp.json()["details"] == "boom"
