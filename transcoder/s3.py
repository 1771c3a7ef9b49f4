from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import quote

import boto3
from boto3.exceptions import Boto3Error
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from django.conf import settings

logger = logging.getLogger(__name__)

# Minimal content-type hints for HLS
CONTENT_TYPES = {
    ".m3u8": "application/vnd.apple.mpegurl",
    ".ts": "video/MP2T",
    ".m2ts": "video/MP2T",
}


class RemoteStoreError(Exception):
    """Upload or delete against the object store failed."""


@dataclass(frozen=True)
class RemoteAsset:
    id: str        # object key
    address: str   # absolute URL a player can fetch


def get_s3_client():
    """
    SDK client for server-side upload/delete.

    boto3 clients are thread-safe once created, so one client is shared by
    all concurrent segment uploads of a job.
    """
    session = boto3.session.Session(
        aws_access_key_id=settings.S3_ACCESS_KEY,
        aws_secret_access_key=settings.S3_SECRET_KEY,
        region_name=settings.S3_REGION,
    )
    return session.client(
        "s3",
        endpoint_url=settings.S3_ENDPOINT_URL,  # e.g. http://127.0.0.1:9000
        config=BotoConfig(
            s3={"addressing_style": "path"},
            signature_version="s3v4",
            connect_timeout=settings.S3_CONNECT_TIMEOUT,
            read_timeout=settings.S3_READ_TIMEOUT,
            retries={"max_attempts": 3, "mode": "standard"},
            max_pool_connections=max(10, settings.UPLOAD_CONCURRENCY * 2),
        ),
    )


def content_type_for(path: str | Path) -> str | None:
    return CONTENT_TYPES.get(Path(path).suffix.lower())


class RemoteStore:
    """Output bucket for transcoded packages."""

    def __init__(self, bucket: str | None = None, *, client=None, public_endpoint: str | None = None) -> None:
        self.bucket = bucket or settings.S3_OUTPUT_BUCKET
        self.public_endpoint = (public_endpoint or settings.S3_PUBLIC_ENDPOINT).rstrip("/")
        self._client = client if client is not None else get_s3_client()

    def object_url(self, key: str) -> str:
        """Direct object URL against the PUBLIC endpoint; the bucket is expected to be public-read."""
        return f"{self.public_endpoint}/{self.bucket}/{quote(key)}"

    def upload(self, local_path: str | Path, name: str) -> RemoteAsset:
        """
        Upload one file under ``name`` (the object key).

        Keys are chosen by the caller; uploading the same key again overwrites
        the object, so a retried job converges on the same addresses.
        """
        extra = {}
        content_type = content_type_for(name)
        if content_type:
            extra["ContentType"] = content_type
        try:
            self._client.upload_file(str(local_path), self.bucket, name, ExtraArgs=extra or None)
        except (Boto3Error, BotoCoreError, ClientError, OSError) as exc:
            # upload_file reports a refused PutObject as S3UploadFailedError, not ClientError.
            raise RemoteStoreError(f"upload of {name} to {self.bucket} failed: {exc}") from exc
        logger.debug("Uploaded %s to s3://%s/%s", local_path, self.bucket, name)
        return RemoteAsset(id=name, address=self.object_url(name))

    def delete(self, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise RemoteStoreError(f"delete of {key} from {self.bucket} failed: {exc}") from exc


def output_key(workspace_key: str, filename: str) -> str:
    """Deterministic object key for one artifact of a job."""
    prefix = settings.S3_OUTPUT_PREFIX
    return f"{prefix}/{workspace_key}/{filename}" if prefix else f"{workspace_key}/{filename}"
