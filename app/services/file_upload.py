"""
Publication upload policy.

Validation rules, stored-file naming and the error hierarchy shared by the
ingestion service, the Celery task and the HTTP layer.

Key features:
- MIME allow-list and size limit checked BEFORE anything is written
- PDF signature check (opt-in)
- Pluggable naming strategies (original, hash, timestamp, uuid)
"""

from __future__ import annotations

import hashlib
import re
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from urllib.parse import quote

from app.config import settings

# ---------------------------------------------------------------------------
# Magic bytes for file-type validation (content type → valid signatures)
# ---------------------------------------------------------------------------
MAGIC_BYTES: dict[str, list[bytes]] = {
    "application/pdf": [b"%PDF"],
}

CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]")
# Unicode word characters are allowed in storage keys.
UNSAFE_KEY_CHARS_RE = re.compile(r"[^\w. -]+")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class PublicationError(Exception):
    """Base exception for publication ingestion errors."""

    pass


class PublicationValidationError(PublicationError):
    """Uploaded file was rejected; never retried."""

    pass


class InvalidContentTypeError(PublicationValidationError):
    """Content type is not allowed."""

    pass


class FileTooLargeError(PublicationValidationError):
    """File exceeds size limit."""

    pass


class InvalidMagicBytesError(PublicationValidationError):
    """File content does not match its claimed format."""

    pass


class PublicationStorageError(PublicationError):
    """Storage backend rejected or could not complete an operation."""

    pass


class PublicationPersistenceError(PublicationError):
    """Publication record could not be saved or removed."""

    pass


class PublicationNotFoundError(PublicationError):
    """Publication record does not exist."""

    pass


class PublicationForbiddenError(PublicationError):
    """Acting user does not own the publication."""

    pass


# ---------------------------------------------------------------------------
# Policy and file handle
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PublicationUploadConfig:
    """Immutable upload policy handed to the ingestion service."""

    allowed_mime_types: frozenset[str]
    max_size_bytes: int
    require_magic_bytes: bool = True
    naming_strategy: str = "original"
    naming_separator: str = "_"
    queue_enabled: bool = True
    queue_name: str = "file-uploads"


@dataclass(frozen=True)
class UploadedPublicationFile:
    """An uploaded file: client filename, declared MIME type and bytes."""

    filename: str
    content_type: str | None
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


def publication_upload_config() -> PublicationUploadConfig:
    """Build the upload policy from application settings."""
    return PublicationUploadConfig(
        allowed_mime_types=frozenset(
            item.strip()
            for item in settings.publication_allowed_mime_types.split(",")
            if item.strip()
        ),
        max_size_bytes=settings.publication_max_size_bytes,
        require_magic_bytes=settings.publication_require_magic_bytes,
        naming_strategy=settings.publication_naming_strategy,
        naming_separator=settings.publication_naming_separator,
        queue_enabled=settings.publication_queue_enabled,
        queue_name=settings.publication_queue_name,
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def sanitize_filename(filename: str) -> str:
    """Client basename with directories and control characters removed.

    Non-ASCII letters are kept; this is the name recorded and parsed.
    """
    name = re.split(r"[\\/]", filename)[-1]
    cleaned = CONTROL_CHARS_RE.sub("", name).strip().strip(".")
    return cleaned[:255] or "file"


def storage_filename(filename: str) -> str:
    """Key-safe form of a filename for the stored object."""
    cleaned = UNSAFE_KEY_CHARS_RE.sub("_", sanitize_filename(filename)).strip().strip(".")
    return cleaned or "file"


def format_file_size(size: int) -> str:
    """Format file size for human-readable display."""
    if size < 1024:
        return f"{size} B"
    elif size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    else:
        return f"{size / (1024 * 1024):.1f} MB"


def validate_publication_file(
    config: PublicationUploadConfig, file: UploadedPublicationFile
) -> None:
    """
    Run all validation checks BEFORE anything is stored or queued.

    Raises PublicationValidationError subclass on failure.
    """
    if file.content_type not in config.allowed_mime_types:
        allowed = ", ".join(sorted(config.allowed_mime_types))
        raise InvalidContentTypeError(f"File type not allowed. Allowed types: {allowed}")

    if file.size > config.max_size_bytes:
        max_kb = config.max_size_bytes // 1024
        raise FileTooLargeError(
            f"File size exceeds the maximum allowed size of {max_kb}KB"
        )

    if config.require_magic_bytes and file.content_type in MAGIC_BYTES:
        signatures = MAGIC_BYTES[file.content_type]
        if not any(file.data[: len(sig)] == sig for sig in signatures):
            raise InvalidMagicBytesError("File content does not match the expected format")


def _unique_token() -> str:
    return uuid.uuid4().hex[:8]


def generate_stored_filename(
    config: PublicationUploadConfig,
    filename: str,
    data: bytes,
    now: datetime | None = None,
) -> str:
    """Name the stored object according to the configured strategy."""
    path = Path(filename)
    stem, ext = path.stem, path.suffix.lower()
    sep = config.naming_separator
    if config.naming_strategy == "hash":
        digest = hashlib.sha256(data).hexdigest()[:24]
        return f"{stem}{sep}{digest}{ext}"
    if config.naming_strategy == "timestamp":
        stamp = (now or datetime.now(UTC)).strftime("%Y%m%d_%H%M%S")
        return f"{stem}{sep}{stamp}{ext}"
    if config.naming_strategy == "uuid":
        return f"{uuid.uuid4()}{ext}"
    return filename


def with_unique_suffix(config: PublicationUploadConfig, filename: str) -> str:
    path = Path(filename)
    return f"{path.stem}{config.naming_separator}{_unique_token()}{path.suffix}"


def build_content_disposition(filename: str) -> str:
    """ASCII ``filename`` fallback plus the RFC 5987 ``filename*`` form."""
    name = sanitize_filename(filename)
    fallback = storage_filename(name).encode("ascii", "replace").decode("ascii")
    fallback = fallback.replace("?", "_")
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(name, safe='')}"
