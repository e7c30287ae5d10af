"""Publication upload, listing, download and deletion endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_db
from app.schemas.publication import (
    MIN_YEAR,
    PublicationListResponse,
    PublicationQueued,
    PublicationRead,
    PublicationUploadMetadata,
)
from app.services.file_upload import UploadedPublicationFile, build_content_disposition
from app.services.publications import DEFAULT_PAGE_SIZE, PendingUpload, publication_uploads
from app.services.response import list_response

router = APIRouter(prefix="/publications", tags=["publications"])


@router.post(
    "",
    status_code=201,
    response_model=PublicationRead,
    responses={202: {"model": PublicationQueued}},
)
def upload_publication(
    file: UploadFile = File(...),
    title: str = Form(...),
    description: str | None = Form(None),
    name: str | None = Form(None),
    year: int | None = Form(None),
    month: int | None = Form(None),
    day: int | None = Form(None),
    page: int | None = Form(None),
    background: bool | None = Form(None),
    db: Session = Depends(get_db),
    current_user: dict = Depends(get_current_user),
):
    try:
        metadata = PublicationUploadMetadata(
            name=name,
            title=title,
            description=description,
            year=year,
            month=month,
            day=day,
            page=page,
        )
    except ValidationError as exc:
        raise RequestValidationError(
            exc.errors(include_url=False, include_context=False)
        ) from exc

    # One byte past the limit is enough for validation to reject the file.
    max_read = publication_uploads.config.max_size_bytes + 1
    upload = UploadedPublicationFile(
        filename=file.filename or "upload",
        content_type=file.content_type,
        data=file.file.read(max_read),
    )
    result = publication_uploads.upload_publication(
        db,
        metadata,
        upload,
        current_user["user_id"],
        run_in_background=background,
    )
    if isinstance(result, PendingUpload):
        return JSONResponse(
            status_code=202,
            content=PublicationQueued(task_id=result.task_id).model_dump(),
        )
    return result


@router.get("", response_model=PublicationListResponse)
def list_publications(
    year: int | None = Query(default=None, ge=MIN_YEAR),
    month: int | None = Query(default=None, ge=1, le=12),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    current_user: dict = Depends(get_current_user),
):
    items = publication_uploads.list_publications(
        db,
        current_user["user_id"],
        year=year,
        month=month,
        limit=limit,
        offset=offset,
    )
    return list_response(items, limit, offset)


@router.get("/{publication_id}", response_model=PublicationRead)
def get_publication(
    publication_id: str,
    db: Session = Depends(get_db),
    current_user: dict = Depends(get_current_user),
):
    return publication_uploads.get_owned_publication(
        db, publication_id, current_user["user_id"]
    )


@router.get("/{publication_id}/download")
def download_publication(
    publication_id: str,
    db: Session = Depends(get_db),
    current_user: dict = Depends(get_current_user),
):
    publication = publication_uploads.get_owned_publication(
        db, publication_id, current_user["user_id"]
    )
    stream = publication_uploads.stream_publication(publication)
    headers = {"Content-Disposition": build_content_disposition(publication.original_filename)}
    if stream.content_length is not None:
        headers["Content-Length"] = str(stream.content_length)
    return StreamingResponse(
        stream.chunks,
        media_type=stream.content_type or "application/octet-stream",
        headers=headers,
    )


@router.delete("/{publication_id}")
def delete_publication(
    publication_id: str,
    db: Session = Depends(get_db),
    current_user: dict = Depends(get_current_user),
):
    publication = publication_uploads.get_owned_publication(
        db, publication_id, current_user["user_id"]
    )
    publication_uploads.delete_publication(db, publication)
    return {"message": "Publication deleted successfully"}
