"""Copy locally stored publication files to S3 and repoint their records."""

from __future__ import annotations

from app.db import SessionLocal
from app.models.publication import Publication
from app.services.object_storage import (
    ObjectStorageError,
    ensure_storage_bucket,
    get_local_storage,
    get_s3_storage,
)
from app.services.storage_paths import PUBLICATIONS_PREFIX


def main() -> None:
    ensure_storage_bucket()
    source = get_local_storage()
    target = get_s3_storage()
    db = SessionLocal()
    migrated = 0
    skipped = 0
    failed = 0
    try:
        for key in source.list_keys(f"{PUBLICATIONS_PREFIX}/"):
            if target.exists(key):
                skipped += 1
                continue
            record = db.query(Publication).filter(Publication.file_path == key).first()
            content_type = record.mime_type if record else None
            try:
                target.upload(key, source.download(key), content_type)
            except ObjectStorageError as exc:
                print(f"Failed to migrate {key}: {exc}")
                failed += 1
                continue
            if record is not None:
                record.file_url = target.url(key)
                db.add(record)
                db.commit()
            migrated += 1

        print(f"Migrated {migrated} publication files, skipped {skipped}, failed {failed}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
