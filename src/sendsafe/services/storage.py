"""Object store for delivery files.

Every delivery file is one object in a single S3-compatible bucket, keyed
``deliveries/<delivery id>/<file id>/<filename>``. Uploads record the
SHA-256 of the content in the object metadata and downloads recompute it,
so a tampered or truncated object is refused instead of served.

Example:
    store = ObjectStoreClient.from_settings(get_settings().s3)
    result = store.upload(key, content, content_type="application/pdf")
    content, meta = store.download(key, expected_digest=result.sha256_digest)
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

if TYPE_CHECKING:
    from uuid import UUID

    from mypy_boto3_s3 import S3Client

    from sendsafe.core.config import S3Settings

logger = logging.getLogger(__name__)

DIGEST_METADATA_KEY = "sha256-digest"
DEFAULT_CONTENT_TYPE = "application/octet-stream"

# Codes S3 and MinIO use for "no such object/bucket" across head/get/delete
_NOT_FOUND = frozenset({"404", "NoSuchKey", "NotFound", "NoSuchBucket"})


@dataclass(frozen=True)
class UploadResult:
    """What the bucket acknowledged for one stored file."""

    key: str
    bucket: str
    sha256_digest: str
    size_bytes: int
    etag: str


@dataclass(frozen=True)
class ObjectMetadata:
    key: str
    bucket: str
    size_bytes: int
    content_type: str
    sha256_digest: str | None
    etag: str


class StorageError(Exception):
    """The object store refused or failed an operation.

    ``operation`` names the client method (upload, download, delete, ...)
    and ``key`` the object, when one was involved.
    """

    def __init__(
        self,
        message: str,
        *,
        bucket: str | None = None,
        key: str | None = None,
        operation: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.bucket = bucket
        self.key = key
        self.operation = operation


class ObjectNotFoundError(StorageError):
    pass


class BucketNotFoundError(StorageError):
    pass


class IntegrityError(StorageError):
    """Stored content no longer matches the digest recorded at upload."""


def build_storage_key(delivery_id: UUID, file_id: UUID, filename: str) -> str:
    # The file id segment keeps two uploads of the same filename apart
    return f"deliveries/{delivery_id}/{file_id}/{filename}"


def _code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


class ObjectStoreClient:
    """Synchronous boto3 client bound to the delivery bucket."""

    def __init__(
        self,
        endpoint_url: str,
        access_key: str,
        secret_key: str,
        bucket: str,
        region: str = "us-east-1",
        *,
        connect_timeout: float = 5.0,
        read_timeout: float = 30.0,
        max_retries: int = 3,
    ) -> None:
        self.bucket = bucket
        self._endpoint_url = endpoint_url
        self._region = region
        self._client: S3Client = boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
            config=Config(
                signature_version="s3v4",
                connect_timeout=connect_timeout,
                read_timeout=read_timeout,
                retries={"max_attempts": max_retries, "mode": "standard"},
            ),
        )

    @classmethod
    def from_settings(cls, settings: S3Settings) -> ObjectStoreClient:
        return cls(
            endpoint_url=settings.endpoint,
            access_key=settings.access_key.get_secret_value(),
            secret_key=settings.secret_key.get_secret_value(),
            bucket=settings.bucket,
            region=settings.region,
        )

    @staticmethod
    def compute_sha256(data: bytes) -> str:
        return hashlib.sha256(data).hexdigest()

    def _fail(
        self, operation: str, error: ClientError, key: str | None = None
    ) -> StorageError:
        where = f"{self.bucket}/{key}" if key else self.bucket
        return StorageError(
            f"{operation} on {where} failed: {error}",
            bucket=self.bucket,
            key=key,
            operation=operation,
        )

    def ensure_bucket(self) -> bool:
        """Create the bucket when it is missing.

        Returns:
            True when the bucket had to be created.
        """
        try:
            self._client.head_bucket(Bucket=self.bucket)
        except ClientError as e:
            if _code(e) not in _NOT_FOUND:
                raise self._fail("head_bucket", e) from e
        else:
            return False

        create_args: dict[str, Any] = {"Bucket": self.bucket}
        # us-east-1 rejects an explicit LocationConstraint
        if self._region != "us-east-1":
            create_args["CreateBucketConfiguration"] = {"LocationConstraint": self._region}
        try:
            self._client.create_bucket(**create_args)
        except ClientError as e:
            raise self._fail("create_bucket", e) from e

        logger.info("Created bucket %s", self.bucket)
        return True

    def upload(
        self, key: str, data: bytes, *, content_type: str = DEFAULT_CONTENT_TYPE
    ) -> UploadResult:
        """Store ``data`` under ``key`` together with its SHA-256 digest.

        Raises:
            BucketNotFoundError: The delivery bucket does not exist.
            StorageError: Any other refusal from the store.
        """
        digest = self.compute_sha256(data)
        try:
            response = self._client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                Metadata={DIGEST_METADATA_KEY: digest},
            )
        except ClientError as e:
            if _code(e) == "NoSuchBucket":
                raise BucketNotFoundError(
                    f"Bucket {self.bucket} does not exist",
                    bucket=self.bucket,
                    key=key,
                    operation="upload",
                ) from e
            raise self._fail("upload", e, key) from e

        logger.debug("Stored %s (%d bytes, sha256 %s)", key, len(data), digest[:12])
        return UploadResult(
            key=key,
            bucket=self.bucket,
            sha256_digest=digest,
            size_bytes=len(data),
            etag=response.get("ETag", ""),
        )

    def download(
        self,
        key: str,
        *,
        verify_integrity: bool = True,
        expected_digest: str | None = None,
    ) -> tuple[bytes, ObjectMetadata]:
        """Fetch an object and check it against its digest.

        ``expected_digest`` (normally the one kept in the database) takes
        precedence over the digest stored in the object metadata.

        Raises:
            ObjectNotFoundError: Nothing is stored under ``key``.
            IntegrityError: The content does not hash to the expected digest.
            StorageError: Any other refusal from the store.
        """
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
            data = response["Body"].read()
        except ClientError as e:
            if _code(e) in _NOT_FOUND:
                raise ObjectNotFoundError(
                    f"No object at {self.bucket}/{key}",
                    bucket=self.bucket,
                    key=key,
                    operation="download",
                ) from e
            raise self._fail("download", e, key) from e

        stored_digest = response.get("Metadata", {}).get(DIGEST_METADATA_KEY)
        wanted = expected_digest or stored_digest
        if verify_integrity and wanted:
            actual = self.compute_sha256(data)
            if actual != wanted:
                raise IntegrityError(
                    f"Digest mismatch for {key}: expected {wanted[:12]}, got {actual[:12]}",
                    bucket=self.bucket,
                    key=key,
                    operation="download",
                )

        return data, ObjectMetadata(
            key=key,
            bucket=self.bucket,
            size_bytes=len(data),
            content_type=response.get("ContentType", DEFAULT_CONTENT_TYPE),
            sha256_digest=stored_digest,
            etag=response.get("ETag", ""),
        )

    def delete(self, key: str) -> bool:
        """Remove an object. A key that is already gone counts as deleted."""
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _code(e) not in _NOT_FOUND:
                raise self._fail("delete", e, key) from e
        logger.debug("Deleted %s", key)
        return True

    def exists(self, key: str) -> bool:
        try:
            self._client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _code(e) in _NOT_FOUND:
                return False
            raise self._fail("exists", e, key) from e
        return True

    def health_check(self) -> dict[str, Any]:
        """Confirm the bucket is reachable; raises StorageError otherwise."""
        try:
            self._client.head_bucket(Bucket=self.bucket)
        except ClientError as e:
            raise self._fail("health_check", e) from e
        return {"healthy": True, "endpoint": self._endpoint_url, "bucket": self.bucket}
