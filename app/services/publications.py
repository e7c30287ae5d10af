"""Publication ingestion: parse, validate, store, persist, or defer to a worker."""

from __future__ import annotations

import base64
import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, date, datetime

from sqlalchemy import inspect, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.metrics import record_upload
from app.models.publication import Publication
from app.schemas.publication import PublicationUploadMetadata
from app.services.common import apply_pagination, coerce_uuid, try_coerce_uuid
from app.services.file_upload import (
    PublicationForbiddenError,
    PublicationNotFoundError,
    PublicationPersistenceError,
    PublicationStorageError,
    PublicationUploadConfig,
    PublicationValidationError,
    UploadedPublicationFile,
    format_file_size,
    generate_stored_filename,
    publication_upload_config,
    sanitize_filename,
    storage_filename,
    validate_publication_file,
    with_unique_suffix,
)
from app.services.filename_parser import ParsedFilename, parse_filename
from app.services.object_storage import (
    ObjectExistsError,
    ObjectNotFoundError,
    ObjectStorageError,
    StorageService,
    StreamResult,
    get_storage,
)
from app.services.storage_paths import PUBLICATIONS_PREFIX, build_storage_path

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 15
MAX_KEY_ATTEMPTS = 5


@dataclass(frozen=True)
class EffectiveMetadata:
    name: str
    title: str
    description: str | None
    year: int
    month: int
    day: int
    page: int | None


@dataclass(frozen=True)
class PendingUpload:
    """Handle returned when processing was handed to the worker."""

    task_id: str
    filename: str
    status: str = "queued"


def resolve_effective_metadata(
    metadata: PublicationUploadMetadata,
    parsed: ParsedFilename,
    today: date | None = None,
) -> EffectiveMetadata:
    """Merge caller metadata over parsed filename metadata; caller wins."""
    today = today or datetime.now(UTC).date()
    name = metadata.name or parsed.name
    return EffectiveMetadata(
        name=name,
        title=metadata.title or name,
        description=metadata.description,
        year=metadata.year or parsed.year or today.year,
        month=metadata.month or parsed.month or today.month,
        day=metadata.day or parsed.day or today.day,
        page=metadata.page or parsed.page,
    )


class PublicationUploadService:
    """Ingestion orchestrator for uploaded publications."""

    def __init__(
        self,
        config: PublicationUploadConfig,
        storage: StorageService | None = None,
    ) -> None:
        self.config = config
        self.storage = storage

    def _storage_client(self) -> StorageService:
        if self.storage is None:
            self.storage = get_storage()
        return self.storage

    def validate(self, file: UploadedPublicationFile) -> None:
        try:
            validate_publication_file(self.config, file)
        except PublicationValidationError as exc:
            record_upload("rejected")
            logger.warning(
                "publication_upload_rejected filename=%s reason=%s", file.filename, exc
            )
            raise

    def upload_publication(
        self,
        db: Session,
        metadata: PublicationUploadMetadata,
        file: UploadedPublicationFile,
        user_id: str | uuid.UUID,
        run_in_background: bool | None = None,
    ) -> Publication | PendingUpload:
        """Validate the file, then process it inline or enqueue it.

        Validation always happens here, so invalid input is never queued.
        """
        if run_in_background is None:
            run_in_background = self.config.queue_enabled
        self.validate(file)
        if run_in_background:
            return self._dispatch(metadata, file, user_id)
        return self.process(db, metadata, file, user_id)

    def _dispatch(
        self,
        metadata: PublicationUploadMetadata,
        file: UploadedPublicationFile,
        user_id: str | uuid.UUID,
    ) -> PendingUpload:
        from app.tasks.publications import process_publication_upload

        async_result = process_publication_upload.apply_async(
            kwargs={
                "metadata": metadata.model_dump(mode="json", exclude_none=True),
                "filename": file.filename,
                "content_type": file.content_type,
                "file_bytes_b64": base64.b64encode(file.data).decode("ascii"),
                "user_id": str(user_id),
            },
            queue=self.config.queue_name,
        )
        record_upload("queued")
        logger.info(
            "publication_upload_queued filename=%s user_id=%s task_id=%s",
            file.filename,
            user_id,
            async_result.id,
        )
        return PendingUpload(task_id=str(async_result.id), filename=file.filename)

    def process(
        self,
        db: Session,
        metadata: PublicationUploadMetadata,
        file: UploadedPublicationFile,
        user_id: str | uuid.UUID,
    ) -> Publication:
        """Store the file and create its publication record.

        A record is only created after the object is fully written, and the
        object is removed again if the record cannot be saved and no saved
        record already points at its key.
        """
        self.validate(file)
        filename = sanitize_filename(file.filename)
        parsed = parse_filename(filename)
        effective = resolve_effective_metadata(metadata, parsed)
        logger.info(
            "publication_upload_processing filename=%s parsed=%s",
            filename,
            parsed,
        )

        directory = build_storage_path(
            effective.name, effective.year, effective.month, effective.day
        )
        storage = self._storage_client()
        stored_name = generate_stored_filename(
            self.config, storage_filename(filename), file.data
        )
        try:
            storage.make_directory(directory)
            key = self._store_object(storage, directory, stored_name, file)
            url = storage.url(key)
        except ObjectStorageError as exc:
            record_upload("failed")
            logger.error("publication_store_failed filename=%s error=%s", filename, exc)
            raise PublicationStorageError(f"Failed to store file: {exc}") from exc

        record = Publication(
            user_id=coerce_uuid(user_id),
            name=effective.name,
            title=effective.title,
            description=effective.description,
            original_filename=filename,
            file_path=key,
            file_url=url,
            mime_type=file.content_type or "application/octet-stream",
            file_size=file.size,
            year=effective.year,
            month=effective.month,
            day=effective.day,
            page=effective.page,
        )
        try:
            db.add(record)
            db.commit()
            db.refresh(record)
        except SQLAlchemyError as exc:
            db.rollback()
            if self._key_is_claimed(db, key):
                logger.warning("publication_object_kept key=%s reason=claimed", key)
            else:
                self._discard_object(storage, key)
            record_upload("failed")
            raise PublicationPersistenceError(
                f"Failed to create publication: {exc}"
            ) from exc

        record_upload("created")
        logger.info(
            "publication_upload_success id=%s user_id=%s key=%s size=%s",
            record.id,
            record.user_id,
            key,
            format_file_size(file.size),
        )
        return record

    def _store_object(
        self,
        storage: StorageService,
        directory: str,
        stored_name: str,
        file: UploadedPublicationFile,
    ) -> str:
        """Write the object under a key that no other upload holds.

        Uploads are create-only, so two concurrent requests for the same key
        cannot overwrite each other; the loser retries with a suffixed name.
        """
        key = f"{directory}/{stored_name}"
        for _ in range(MAX_KEY_ATTEMPTS):
            try:
                storage.upload(key, file.data, file.content_type, overwrite=False)
                return key
            except ObjectExistsError:
                renamed = f"{directory}/{with_unique_suffix(self.config, stored_name)}"
                logger.warning("publication_key_collision key=%s renamed=%s", key, renamed)
                key = renamed
        raise ObjectStorageError(f"No free storage key under {directory}")

    def _key_is_claimed(self, db: Session, key: str) -> bool:
        try:
            owner = db.scalar(select(Publication.id).where(Publication.file_path == key))
        except SQLAlchemyError:
            logger.exception("publication_owner_check_failed key=%s", key)
            return False
        return owner is not None

    def _discard_object(self, storage: StorageService, key: str) -> None:
        try:
            storage.delete(key)
            logger.info("publication_object_discarded key=%s", key)
        except ObjectStorageError:
            logger.exception("publication_object_orphaned key=%s", key)

    def delete_publication(self, db: Session, publication: Publication) -> bool:
        """Remove the stored object at ``file_path`` and the record.

        Raises PublicationNotFoundError when the record is already gone.
        """
        state = inspect(publication)
        if state.was_deleted or state.identity is None:
            raise PublicationNotFoundError("Publication not found")
        if db.get(Publication, state.identity[0]) is None:
            raise PublicationNotFoundError("Publication not found")

        publication_id = publication.id
        key = publication.file_path
        storage = self._storage_client()
        try:
            db.delete(publication)
            db.flush()
        except SQLAlchemyError as exc:
            db.rollback()
            raise PublicationPersistenceError(
                f"Failed to delete publication: {exc}"
            ) from exc

        try:
            if storage.exists(key):
                storage.delete(key)
            else:
                logger.warning("publication_object_missing id=%s key=%s", publication_id, key)
        except ObjectStorageError as exc:
            db.rollback()
            logger.error("publication_delete_failed id=%s key=%s error=%s", publication_id, key, exc)
            raise PublicationStorageError(f"Failed to delete file: {exc}") from exc

        try:
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error(
                "publication_record_delete_failed id=%s key=%s object_removed=true",
                publication_id,
                key,
            )
            raise PublicationPersistenceError(
                f"Failed to delete publication: {exc}"
            ) from exc

        logger.info("publication_deleted id=%s key=%s", publication_id, key)
        return True

    def get_owned_publication(
        self, db: Session, publication_id: str | uuid.UUID, user_id: str | uuid.UUID
    ) -> Publication:
        pub_uuid = try_coerce_uuid(publication_id)
        if pub_uuid is None:
            raise PublicationNotFoundError("Publication not found")
        publication = db.get(Publication, pub_uuid)
        if publication is None:
            raise PublicationNotFoundError("Publication not found")
        if publication.user_id != coerce_uuid(user_id):
            logger.warning(
                "publication_access_denied id=%s owner=%s request_user=%s",
                publication.id,
                publication.user_id,
                user_id,
            )
            raise PublicationForbiddenError("You do not own this publication")
        return publication

    def list_publications(
        self,
        db: Session,
        user_id: str | uuid.UUID,
        year: int | None = None,
        month: int | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> list[Publication]:
        query = db.query(Publication).filter(Publication.user_id == coerce_uuid(user_id))
        if year is not None:
            query = query.filter(Publication.year == year)
        if month is not None:
            query = query.filter(Publication.month == month)
        query = query.order_by(
            Publication.year.desc(),
            Publication.month.desc(),
            Publication.day.desc(),
            Publication.created_at.desc(),
        )
        return apply_pagination(query, limit, offset).all()

    def stream_publication(self, publication: Publication) -> StreamResult:
        try:
            stream = self._storage_client().stream(publication.file_path)
        except ObjectNotFoundError as exc:
            raise PublicationNotFoundError("Publication file not found") from exc
        except ObjectStorageError as exc:
            raise PublicationStorageError(f"Failed to read file: {exc}") from exc
        if stream.content_type is None:
            stream.content_type = publication.mime_type
        return stream

    def find_orphaned_objects(self, db: Session) -> list[str]:
        """Stored objects under the publications prefix with no record."""
        try:
            keys = self._storage_client().list_keys(f"{PUBLICATIONS_PREFIX}/")
        except ObjectStorageError as exc:
            raise PublicationStorageError(f"Failed to list stored files: {exc}") from exc
        known = set(db.scalars(select(Publication.file_path)))
        return [key for key in keys if key not in known]

    def reconcile_orphans(self, db: Session, delete: bool = False) -> list[str]:
        orphans = self.find_orphaned_objects(db)
        for key in orphans:
            if delete:
                self._discard_object(self._storage_client(), key)
            else:
                logger.info("publication_orphan_found key=%s", key)
        return orphans

    def check_storage(self) -> dict:
        """Write, read back and delete a probe object."""
        storage = self._storage_client()
        key = f"storage-checks/probe-{uuid.uuid4().hex}.txt"
        payload = f"storage check {datetime.now(UTC).isoformat()}".encode()
        try:
            storage.upload(key, payload, "text/plain")
            stored = storage.download(key)
            storage.delete(key)
        except ObjectStorageError as exc:
            logger.error("storage_check_failed backend=%s error=%s", settings.storage_backend, exc)
            raise PublicationStorageError(f"Storage check failed: {exc}") from exc
        return {
            "success": stored == payload,
            "backend": settings.storage_backend,
            "key": key,
        }


publication_uploads = PublicationUploadService(publication_upload_config())
