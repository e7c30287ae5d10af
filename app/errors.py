from __future__ import annotations

import logging

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.config import settings
from app.services.file_upload import (
    PublicationError,
    PublicationForbiddenError,
    PublicationNotFoundError,
    PublicationValidationError,
)

logger = logging.getLogger(__name__)


def _error_payload(code: str, message: str, details: object, request_id: str | None):
    return {"code": code, "message": message, "details": details, "request_id": request_id}


def _request_id(request: Request) -> str:
    rid = getattr(request.state, "request_id", None)
    return str(rid) if rid else "unknown"


def _sanitize_value(value):
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, UploadFile):
        return value.filename or "upload"
    if isinstance(value, dict):
        return {key: _sanitize_value(val) for key, val in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_sanitize_value(item) for item in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


def register_error_handlers(app) -> None:
    async def _handle_http_exception(request: Request, status_code: int, detail: object):
        code = f"http_{status_code}"
        message = "Request failed"
        details = None
        if isinstance(detail, dict):
            code = detail.get("code", code)
            message = detail.get("message", message)
            details = detail.get("details")
        elif isinstance(detail, str):
            message = detail
        else:
            details = detail
        return JSONResponse(
            status_code=status_code,
            content=_error_payload(code, message, details, _request_id(request)),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return await _handle_http_exception(request, exc.status_code, exc.detail)

    @app.exception_handler(StarletteHTTPException)
    async def starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        detail = exc.detail if getattr(exc, "detail", None) is not None else "Request failed"
        return await _handle_http_exception(request, exc.status_code, detail)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = []
        for error in exc.errors():
            error_copy = dict(error)
            if "input" in error_copy:
                error_copy["input"] = _sanitize_value(error_copy.get("input"))
            if "ctx" in error_copy:
                error_copy["ctx"] = _sanitize_value(error_copy.get("ctx"))
            errors.append(error_copy)
        return JSONResponse(
            status_code=422,
            content=_error_payload(
                "validation_error", "Validation error", errors, _request_id(request)
            ),
        )

    @app.exception_handler(PublicationValidationError)
    async def publication_validation_handler(request: Request, exc: PublicationValidationError):
        return JSONResponse(
            status_code=422,
            content=_error_payload(
                "invalid_file",
                str(exc),
                {"file": [str(exc)]},
                _request_id(request),
            ),
        )

    @app.exception_handler(PublicationNotFoundError)
    async def publication_not_found_handler(request: Request, exc: PublicationNotFoundError):
        return JSONResponse(
            status_code=404,
            content=_error_payload("not_found", str(exc), None, _request_id(request)),
        )

    @app.exception_handler(PublicationForbiddenError)
    async def publication_forbidden_handler(request: Request, exc: PublicationForbiddenError):
        return JSONResponse(
            status_code=403,
            content=_error_payload("forbidden", str(exc), None, _request_id(request)),
        )

    @app.exception_handler(PublicationError)
    async def publication_error_handler(request: Request, exc: PublicationError):
        # Storage and persistence failures
        logger.error(
            "publication_request_failed method=%s path=%s error=%s",
            request.method,
            request.url.path,
            exc,
        )
        return JSONResponse(
            status_code=500,
            content=_error_payload(
                "publication_error",
                "Failed to process publication",
                str(exc) if settings.debug else None,
                _request_id(request),
            ),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception(
            "Unhandled exception on %s %s",
            request.method,
            request.url.path,
            extra={"request_id": _request_id(request)},
        )
        return JSONResponse(
            status_code=500,
            content=_error_payload(
                "internal_error",
                "Internal server error",
                str(exc) if settings.debug else None,
                _request_id(request),
            ),
        )
