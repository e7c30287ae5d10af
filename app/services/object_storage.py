"""Publication object storage: S3-compatible buckets or a local directory."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Protocol

from app.config import settings

logger = logging.getLogger(__name__)


class ObjectStorageError(Exception):
    """Generic object storage failure."""


class ObjectNotFoundError(ObjectStorageError):
    """Raised when object is missing."""


class ObjectExistsError(ObjectStorageError):
    """Raised when a create-only upload finds the key already taken."""


@dataclass
class StreamResult:
    """Streaming metadata for download responses."""

    chunks: Iterator[bytes]
    content_type: str | None
    content_length: int | None


class StorageService(Protocol):
    """Storage provider interface."""

    def upload(
        self, key: str, data: bytes, content_type: str | None, overwrite: bool = True
    ) -> None: ...
    def download(self, key: str) -> bytes: ...
    def stream(self, key: str) -> StreamResult: ...
    def exists(self, key: str) -> bool: ...
    def delete(self, key: str) -> None: ...
    def url(self, key: str) -> str: ...
    def make_directory(self, prefix: str) -> None: ...
    def list_keys(self, prefix: str) -> list[str]: ...


class S3StorageService:
    """S3/MinIO/R2-backed storage provider."""

    def __init__(
        self,
        bucket_name: str,
        endpoint_url: str,
        access_key: str | None,
        secret_key: str | None,
        region: str,
        public_base_url: str | None = None,
        client: Any | None = None,
    ) -> None:
        self.bucket_name = bucket_name
        self.endpoint_url = endpoint_url
        self.region = region
        self.public_base_url = public_base_url
        if client is not None:
            self.client = client
            return
        try:
            import boto3
        except ImportError as exc:
            raise ObjectStorageError("boto3 is required for S3 storage") from exc
        self.client = boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
        )

    @staticmethod
    def _error_code(exc: Exception) -> str:
        response = getattr(exc, "response", None)
        if isinstance(response, dict):
            err = response.get("Error", {})
            if isinstance(err, dict):
                return str(err.get("Code", ""))
        return ""

    def ensure_bucket(self) -> None:
        """Create bucket if missing (safe to call repeatedly)."""
        try:
            self.client.head_bucket(Bucket=self.bucket_name)
            return
        except Exception as exc:
            code = self._error_code(exc)
            if code not in {"404", "NoSuchBucket"}:
                raise ObjectStorageError("Unable to check storage bucket") from exc

        kwargs: dict = {"Bucket": self.bucket_name}
        if self.region and self.region != "us-east-1":
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": self.region}
        self.client.create_bucket(**kwargs)
        logger.info("Created storage bucket: %s", self.bucket_name)

    def upload(
        self, key: str, data: bytes, content_type: str | None, overwrite: bool = True
    ) -> None:
        kwargs: dict = {
            "Bucket": self.bucket_name,
            "Key": key,
            "Body": data,
        }
        if content_type:
            kwargs["ContentType"] = content_type
        if not overwrite:
            # Conditional write: the bucket rejects the put if the key exists.
            kwargs["IfNoneMatch"] = "*"
        try:
            self.client.put_object(**kwargs)
        except Exception as exc:
            code = self._error_code(exc)
            if code in {"PreconditionFailed", "412", "ConditionalRequestConflict"}:
                raise ObjectExistsError(key) from exc
            raise ObjectStorageError("Failed to upload object") from exc

    def download(self, key: str) -> bytes:
        try:
            obj = self.client.get_object(Bucket=self.bucket_name, Key=key)
        except Exception as exc:
            code = self._error_code(exc)
            if code in {"404", "NoSuchKey"}:
                raise ObjectNotFoundError(key) from exc
            raise ObjectStorageError("Failed to download object") from exc
        return obj["Body"].read()

    def stream(self, key: str) -> StreamResult:
        try:
            obj = self.client.get_object(Bucket=self.bucket_name, Key=key)
        except Exception as exc:
            code = self._error_code(exc)
            if code in {"404", "NoSuchKey"}:
                raise ObjectNotFoundError(key) from exc
            raise ObjectStorageError("Failed to stream object") from exc

        body = obj["Body"]
        content_type = obj.get("ContentType")
        content_length = obj.get("ContentLength")
        return StreamResult(
            chunks=iter(lambda: body.read(1024 * 1024), b""),
            content_type=content_type,
            content_length=content_length,
        )

    def exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket_name, Key=key)
            return True
        except Exception as exc:
            code = self._error_code(exc)
            if code in {"404", "NoSuchKey", "NotFound"}:
                return False
            raise ObjectStorageError("Failed to check object") from exc

    def delete(self, key: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket_name, Key=key)
        except Exception as exc:
            raise ObjectStorageError("Failed to delete object") from exc

    def url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url.rstrip('/')}/{key}"
        return f"{self.endpoint_url.rstrip('/')}/{self.bucket_name}/{key}"

    def make_directory(self, prefix: str) -> None:
        # Buckets have no directories; keys carry the full path.
        return None

    def list_keys(self, prefix: str) -> list[str]:
        keys: list[str] = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix):
                keys.extend(item["Key"] for item in page.get("Contents", []))
        except Exception as exc:
            raise ObjectStorageError("Failed to list objects") from exc
        return keys


class LocalStorageService:
    """Filesystem-backed storage provider rooted at ``base_dir``."""

    def __init__(self, base_dir: str | Path, url_prefix: str = "/storage") -> None:
        self.base_dir = Path(base_dir)
        self.url_prefix = url_prefix

    @property
    def base_path(self) -> Path:
        return self.base_dir.resolve()

    def _resolve(self, key: str) -> Path:
        base = self.base_path
        full_path = (base / key).resolve()
        if base != full_path and base not in full_path.parents:
            raise ObjectStorageError("Invalid storage key: outside storage directory")
        return full_path

    def upload(
        self, key: str, data: bytes, content_type: str | None, overwrite: bool = True
    ) -> None:
        target = self._resolve(key)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with target.open("wb" if overwrite else "xb") as handle:
                handle.write(data)
        except FileExistsError as exc:
            raise ObjectExistsError(key) from exc
        except OSError as exc:
            raise ObjectStorageError("Failed to upload object") from exc

    def download(self, key: str) -> bytes:
        target = self._resolve(key)
        if not target.is_file():
            raise ObjectNotFoundError(key)
        try:
            return target.read_bytes()
        except OSError as exc:
            raise ObjectStorageError("Failed to download object") from exc

    def stream(self, key: str) -> StreamResult:
        target = self._resolve(key)
        if not target.is_file():
            raise ObjectNotFoundError(key)

        def _chunks() -> Iterator[bytes]:
            with target.open("rb") as handle:
                while True:
                    chunk = handle.read(1024 * 1024)
                    if not chunk:
                        break
                    yield chunk

        return StreamResult(
            chunks=_chunks(),
            content_type=None,
            content_length=target.stat().st_size,
        )

    def exists(self, key: str) -> bool:
        return self._resolve(key).is_file()

    def delete(self, key: str) -> None:
        target = self._resolve(key)
        try:
            target.unlink(missing_ok=True)
        except OSError as exc:
            raise ObjectStorageError("Failed to delete object") from exc

    def url(self, key: str) -> str:
        return f"{self.url_prefix.rstrip('/')}/{key}"

    def make_directory(self, prefix: str) -> None:
        try:
            self._resolve(prefix).mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ObjectStorageError("Failed to create directory") from exc

    def list_keys(self, prefix: str) -> list[str]:
        root = self._resolve(prefix)
        if not root.is_dir():
            return []
        base = self.base_path
        return sorted(
            path.relative_to(base).as_posix() for path in root.rglob("*") if path.is_file()
        )


@lru_cache(maxsize=1)
def get_s3_storage() -> S3StorageService:
    settings.validate_s3_config()
    return S3StorageService(
        bucket_name=settings.s3_bucket_name,
        endpoint_url=settings.s3_endpoint_url,
        access_key=settings.s3_access_key,
        secret_key=settings.s3_secret_key,
        region=settings.s3_region,
        public_base_url=settings.s3_public_base_url,
    )


@lru_cache(maxsize=1)
def get_local_storage() -> LocalStorageService:
    return LocalStorageService(
        base_dir=settings.local_storage_dir,
        url_prefix=settings.local_storage_url_prefix,
    )


def get_storage() -> StorageService:
    """Return the backend selected by ``STORAGE_BACKEND``."""
    if settings.storage_backend == "local":
        return get_local_storage()
    return get_s3_storage()


def ensure_storage_bucket() -> None:
    """Startup hook helper to guarantee bucket availability."""
    if settings.storage_backend == "s3":
        get_s3_storage().ensure_bucket()
