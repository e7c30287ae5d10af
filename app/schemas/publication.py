"""Pydantic schemas for publications."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from app.services.filename_parser import MIN_YEAR, max_year


class PublicationUploadMetadata(BaseModel):
    """Caller-supplied metadata; any field left out is taken from the filename."""

    name: str | None = Field(None, min_length=1, max_length=255)
    title: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    year: int | None = Field(None, ge=MIN_YEAR)
    month: int | None = Field(None, ge=1, le=12)
    day: int | None = Field(None, ge=1, le=31)
    page: int | None = Field(None, ge=1)

    @field_validator("year")
    @classmethod
    def validate_year(cls, v: int | None) -> int | None:
        if v is not None and v > max_year():
            raise ValueError(f"year must not be after {max_year()}")
        return v


class PublicationRead(BaseModel):
    """Schema for reading a publication."""

    id: UUID
    user_id: UUID
    name: str
    title: str
    description: str | None
    original_filename: str
    file_path: str
    file_url: str
    file_size: int
    mime_type: str
    year: int
    month: int
    day: int
    page: int | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class PublicationQueued(BaseModel):
    message: str = "File upload has been queued for processing"
    status: str = "queued"
    task_id: str


class PublicationListResponse(BaseModel):
    items: list[PublicationRead]
    count: int
    limit: int
    offset: int


class StorageCheckRead(BaseModel):
    success: bool
    backend: str
    key: str
