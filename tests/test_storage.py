"""Tests for object storage integration.

Tests cover:
- Bucket creation
- Upload and download with integrity verification
- Error handling (missing bucket, missing object, digest mismatch)
- Idempotent deletes and existence checks
- Health checks
- Storage key layout

Uses moto for S3 mocking, so no object store has to be running.
"""

import hashlib
import uuid

import boto3
import pytest
from botocore.config import Config
from moto import mock_aws

from sendsafe.core.config import S3Settings
from sendsafe.services.storage import (
    BucketNotFoundError,
    IntegrityError,
    ObjectNotFoundError,
    ObjectStoreClient,
    StorageError,
    build_storage_key,
)

BUCKET = "sendsafe-deliveries"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def s3_client():
    """ObjectStoreClient backed by moto.

    moto only intercepts requests without a custom endpoint_url, so the
    wrapper's internal client is swapped for one created without it.
    """
    with mock_aws():
        mocked = boto3.client(
            "s3",
            aws_access_key_id="test_access_key",
            aws_secret_access_key="test_secret_key",  # noqa: S106
            region_name="us-east-1",
            config=Config(signature_version="s3v4"),
        )
        client = ObjectStoreClient(
            endpoint_url="http://mocked",
            access_key="test_access_key",
            secret_key="test_secret_key",  # noqa: S106
            bucket=BUCKET,
        )
        client._client = mocked
        yield client


@pytest.fixture
def ready_client(s3_client):
    s3_client.ensure_bucket()
    return s3_client


@pytest.fixture
def content() -> bytes:
    return b"%PDF-1.7\nsigned contract\n"


# ---------------------------------------------------------------------------
# Keys and construction
# ---------------------------------------------------------------------------
class TestStorageKey:
    def test_layout(self):
        delivery_id = uuid.UUID("11111111-1111-4111-8111-111111111111")
        file_id = uuid.UUID("22222222-2222-4222-8222-222222222222")

        key = build_storage_key(delivery_id, file_id, "contract.pdf")

        assert key == f"deliveries/{delivery_id}/{file_id}/contract.pdf"


class TestClientConstruction:
    def test_from_settings(self):
        settings = S3Settings(
            endpoint="http://minio:9000",
            access_key="minio",
            secret_key="minio-secret",  # noqa: S106
            bucket="custom-bucket",
            region="eu-west-3",
        )

        with mock_aws():
            client = ObjectStoreClient.from_settings(settings)

        assert client.bucket == "custom-bucket"
        assert client._region == "eu-west-3"

    def test_compute_sha256(self, content):
        assert ObjectStoreClient.compute_sha256(content) == hashlib.sha256(content).hexdigest()


# ---------------------------------------------------------------------------
# Buckets
# ---------------------------------------------------------------------------
class TestEnsureBucket:
    def test_creates_missing_bucket(self, s3_client):
        assert s3_client.ensure_bucket() is True
        s3_client._client.head_bucket(Bucket=BUCKET)

    def test_existing_bucket(self, s3_client):
        s3_client.ensure_bucket()
        assert s3_client.ensure_bucket() is False


# ---------------------------------------------------------------------------
# Upload / download
# ---------------------------------------------------------------------------
class TestUploadDownload:
    def test_upload_records_digest(self, ready_client, content):
        result = ready_client.upload(
            "deliveries/a/b/contract.pdf", content, content_type="application/pdf"
        )

        assert result.bucket == BUCKET
        assert result.size_bytes == len(content)
        assert result.sha256_digest == hashlib.sha256(content).hexdigest()
        head = ready_client._client.head_object(Bucket=BUCKET, Key=result.key)
        assert head["Metadata"]["sha256-digest"] == result.sha256_digest

    def test_upload_without_bucket(self, s3_client, content):
        with pytest.raises(BucketNotFoundError) as exc_info:
            s3_client.upload("deliveries/a/b/c.pdf", content)

        assert exc_info.value.operation == "upload"

    def test_download_round_trip(self, ready_client, content):
        upload = ready_client.upload("k", content, content_type="application/pdf")

        data, metadata = ready_client.download("k", expected_digest=upload.sha256_digest)

        assert data == content
        assert metadata.sha256_digest == upload.sha256_digest
        assert metadata.content_type == "application/pdf"
        assert metadata.size_bytes == len(content)

    def test_digest_mismatch(self, ready_client, content):
        ready_client.upload("k", content)

        with pytest.raises(IntegrityError):
            ready_client.download("k", expected_digest="0" * 64)

    def test_digest_mismatch_ignored_without_verification(self, ready_client, content):
        ready_client.upload("k", content)

        data, _ = ready_client.download("k", verify_integrity=False, expected_digest="0" * 64)

        assert data == content

    def test_tampered_object_detected(self, ready_client, content):
        ready_client.upload("k", content)
        ready_client._client.put_object(
            Bucket=BUCKET,
            Key="k",
            Body=b"tampered",
            Metadata={"sha256-digest": hashlib.sha256(content).hexdigest()},
        )

        with pytest.raises(IntegrityError):
            ready_client.download("k")

    def test_missing_object(self, ready_client):
        with pytest.raises(ObjectNotFoundError) as exc_info:
            ready_client.download("deliveries/missing")

        assert exc_info.value.key == "deliveries/missing"
        assert isinstance(exc_info.value, StorageError)


# ---------------------------------------------------------------------------
# Delete / exists / health
# ---------------------------------------------------------------------------
class TestDeleteAndExists:
    def test_delete_existing(self, ready_client, content):
        ready_client.upload("k", content)

        assert ready_client.delete("k") is True
        assert ready_client.exists("k") is False

    def test_delete_missing_is_idempotent(self, ready_client):
        assert ready_client.delete("never-uploaded") is True
        assert ready_client.delete("never-uploaded") is True

    def test_exists(self, ready_client, content):
        assert ready_client.exists("k") is False
        ready_client.upload("k", content)
        assert ready_client.exists("k") is True


class TestHealthCheck:
    def test_healthy(self, ready_client):
        health = ready_client.health_check()

        assert health["healthy"] is True
        assert health["bucket"] == BUCKET

    def test_missing_bucket(self, s3_client):
        with pytest.raises(StorageError) as exc_info:
            s3_client.health_check()

        assert exc_info.value.operation == "health_check"
