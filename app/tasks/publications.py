"""Celery tasks for background publication ingestion."""

from __future__ import annotations

import logging
import time
from base64 import b64decode

from app.celery_app import celery_app
from app.config import settings
from app.db import SessionLocal
from app.metrics import observe_job
from app.models.user import User
from app.schemas.publication import PublicationUploadMetadata
from app.services.common import try_coerce_uuid
from app.services.file_upload import (
    PublicationPersistenceError,
    PublicationStorageError,
    PublicationValidationError,
    UploadedPublicationFile,
)
from app.services.publications import publication_uploads

logger = logging.getLogger(__name__)

# Delay before retry N (1-based) of a failed upload
RETRY_DELAYS = [10, 30, 60]
MAX_RETRIES = max(settings.publication_task_max_attempts - 1, 0)


@celery_app.task(
    name="app.tasks.publications.process_publication_upload",
    bind=True,
    max_retries=MAX_RETRIES,
)
def process_publication_upload(
    self,
    *,
    metadata: dict,
    filename: str,
    content_type: str | None,
    file_bytes_b64: str,
    user_id: str,
) -> str | None:
    """Run the synchronous ingestion path on behalf of the uploading user.

    Storage and persistence failures are retried with backoff; validation
    failures and unknown users are not.
    """
    start = time.monotonic()
    status = "success"
    session = SessionLocal()
    try:
        user_uuid = try_coerce_uuid(user_id)
        user = session.get(User, user_uuid) if user_uuid else None
        if user is None or not user.is_active:
            status = "error"
            logger.error(
                "publication_upload_dropped reason=unknown_user user_id=%s filename=%s",
                user_id,
                filename,
            )
            return None

        upload = UploadedPublicationFile(
            filename=filename,
            content_type=content_type,
            data=b64decode(file_bytes_b64),
        )
        publication = publication_uploads.process(
            session,
            PublicationUploadMetadata.model_validate(metadata),
            upload,
            user.id,
        )
        logger.info(
            "publication_upload_task_success id=%s filename=%s user_id=%s attempt=%s",
            publication.id,
            publication.original_filename,
            user_id,
            self.request.retries + 1,
        )
        return str(publication.id)
    except PublicationValidationError as exc:
        status = "error"
        session.rollback()
        logger.error(
            "publication_upload_dropped reason=invalid filename=%s user_id=%s error=%s",
            filename,
            user_id,
            exc,
        )
        raise
    except (PublicationStorageError, PublicationPersistenceError) as exc:
        session.rollback()
        attempt = self.request.retries + 1
        if self.request.retries >= self.max_retries:
            status = "error"
            logger.critical(
                "publication_upload_failed_permanently filename=%s user_id=%s attempts=%s error=%s",
                filename,
                user_id,
                attempt,
                exc,
            )
            raise
        status = "retry"
        countdown = RETRY_DELAYS[min(self.request.retries, len(RETRY_DELAYS) - 1)]
        logger.warning(
            "publication_upload_retry filename=%s user_id=%s attempt=%s countdown=%s error=%s",
            filename,
            user_id,
            attempt,
            countdown,
            exc,
        )
        raise self.retry(exc=exc, countdown=countdown)
    except Exception:
        status = "error"
        session.rollback()
        logger.exception("publication_upload_task_crashed filename=%s user_id=%s", filename, user_id)
        raise
    finally:
        session.close()
        observe_job("publication_upload", status, time.monotonic() - start)
