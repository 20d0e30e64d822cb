"""
Copy files from HTTP(S) URLs into an S3-compatible bucket.
"""
import asyncio
import io
import logging
import posixpath
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional
from urllib.parse import urlsplit

import boto3
import httpx
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from opus_config import S3Settings

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"
DOWNLOAD_CHUNK_SIZE = 64 * 1024

ProgressCallback = Callable[[int, int], None]


class StorageError(RuntimeError):
    """Raised when a file cannot be copied into object storage."""


@dataclass
class UploadResult:
    bucket: str
    object_name: str
    size: int
    etag: str
    content_type: str
    source_url: str
    duration: float
    version_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "bucket": self.bucket,
            "object": self.object_name,
            "size": self.size,
            "etag": self.etag,
            "contentType": self.content_type,
            "sourceUrl": self.source_url,
            "durationSeconds": round(self.duration, 3),
            "versionId": self.version_id,
        }


def create_s3_client(settings: S3Settings) -> Any:
    """Create a boto3 S3 client for the configured endpoint and credentials."""
    if settings.insecure_skip_verify:
        logger.warning("SECURITY WARNING: TLS certificate verification is DISABLED for S3 connection")

    return boto3.client(
        "s3",
        endpoint_url=settings.endpoint_url,
        aws_access_key_id=settings.access_key,
        aws_secret_access_key=settings.secret_key,
        region_name=settings.region,
        verify=not settings.insecure_skip_verify,
        # Path-style addressing works with MinIO and most self-hosted stores
        config=Config(s3={"addressing_style": "path"}),
    )


def _validate_request(source_url: str, bucket: str, object_name: str) -> None:
    if not source_url:
        raise StorageError("source URL cannot be empty")
    if not bucket:
        raise StorageError("bucket name cannot be empty")
    if not object_name:
        raise StorageError("object name cannot be empty")

    scheme = urlsplit(source_url).scheme
    if scheme not in ("http", "https"):
        raise StorageError(
            f"unsupported URL scheme: {scheme or '<none>'} (only http and https are supported)"
        )


class _ProgressTracker:
    """Adapts boto3's incremental transfer callback to (transferred, total)."""

    def __init__(self, total: int, callback: ProgressCallback):
        self.total = total
        self.transferred = 0
        self.callback = callback

    def __call__(self, bytes_amount: int) -> None:
        self.transferred += bytes_amount
        if bytes_amount > 0:
            self.callback(self.transferred, self.total)


async def _ensure_bucket(s3_client: Any, bucket: str) -> None:
    try:
        await asyncio.to_thread(s3_client.head_bucket, Bucket=bucket)
    except ClientError as e:
        code = e.response.get("Error", {}).get("Code", "")
        if code in ("404", "NoSuchBucket", "NotFound"):
            raise StorageError(f"bucket '{bucket}' does not exist") from e
        raise StorageError(f"failed to check if bucket exists: {e}") from e
    except BotoCoreError as e:
        raise StorageError(f"failed to check if bucket exists: {e}") from e


async def download_url_to_bucket(http_client: httpx.AsyncClient, s3_client: Any,
                                 source_url: str, bucket: str, object_name: str,
                                 progress: Optional[ProgressCallback] = None) -> UploadResult:
    """
    Download a file over HTTP(S) and upload it to an S3 bucket.

    Args:
        http_client: Configured client used for the download
        s3_client: boto3 S3 client
        source_url: The http or https URL to download
        bucket: Target bucket, which must already exist
        object_name: Target object key
        progress: Optional callback receiving (bytes_transferred, total_bytes)
            while the upload runs

    Returns:
        UploadResult describing the stored object

    Raises:
        StorageError: if validation, download or upload fails
    """
    _validate_request(source_url, bucket, object_name)
    await _ensure_bucket(s3_client, bucket)

    logger.info(f"Starting download of {source_url} to s3://{bucket}/{object_name}")
    start_time = time.monotonic()

    buffer = io.BytesIO()
    try:
        async with http_client.stream("GET", source_url) as response:
            if response.status_code != httpx.codes.OK:
                raise StorageError(
                    f"HTTP request failed with status {response.status_code}: {response.reason_phrase}"
                )
            content_type = response.headers.get("Content-Type") or DEFAULT_CONTENT_TYPE
            logger.info(
                f"File download started (content_type={content_type}, "
                f"content_length={response.headers.get('Content-Length', 'unknown')})"
            )
            async for chunk in response.aiter_bytes(DOWNLOAD_CHUNK_SIZE):
                buffer.write(chunk)
    except httpx.HTTPError as e:
        raise StorageError(f"failed to download file from URL: {e}") from e

    size = buffer.tell()
    buffer.seek(0)

    extra_args = {
        "ContentType": content_type,
        "Metadata": {
            "source-url": source_url,
            "download-date": datetime.now(timezone.utc).isoformat(timespec="seconds"),
            "original-name": posixpath.basename(urlsplit(source_url).path),
        },
    }
    callback = _ProgressTracker(size, progress) if progress else None

    try:
        await asyncio.to_thread(
            s3_client.upload_fileobj, buffer, bucket, object_name,
            ExtraArgs=extra_args, Callback=callback,
        )
        head = await asyncio.to_thread(s3_client.head_object, Bucket=bucket, Key=object_name)
    except (BotoCoreError, ClientError) as e:
        raise StorageError(f"failed to upload file to S3: {e}") from e

    result = UploadResult(
        bucket=bucket,
        object_name=object_name,
        size=head.get("ContentLength", size),
        etag=head.get("ETag", "").strip('"'),
        content_type=content_type,
        source_url=source_url,
        duration=time.monotonic() - start_time,
        version_id=head.get("VersionId"),
    )
    logger.info(
        f"Uploaded s3://{bucket}/{object_name} (size={result.size}, etag={result.etag}, "
        f"duration={result.duration:.2f}s)"
    )
    return result
