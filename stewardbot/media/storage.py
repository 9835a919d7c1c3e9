"""S3-compatible object storage for inspection photos and videos.

boto3 is synchronous, so uploads run in a worker thread. Keys look like
``<directory>/<identity>/<yyyy>/<mm>/<uuid>.<ext>``, or
``<directory>/<identity>/media/<source id>.<ext>`` when the channel supplies a
stable id for the media, so a redelivered upload lands on the same object.
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import uuid
from datetime import datetime, timezone
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from stewardbot.config import StorageSettings

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """An object could not be written to storage."""


class ObjectStorage:
    """Thin uploader returning a public URL for each object."""

    def __init__(self, settings: StorageSettings, client: Any | None = None) -> None:
        self._settings = settings
        self._client = client

    @property
    def is_configured(self) -> bool:
        return bool(self._settings.storage_bucket)

    def _get_client(self) -> Any:
        if self._client is None:
            s = self._settings
            self._client = boto3.client(
                "s3",
                region_name=s.storage_region or None,
                endpoint_url=s.storage_endpoint_url or None,
                aws_access_key_id=s.storage_access_key or None,
                aws_secret_access_key=s.storage_secret_key or None,
            )
        return self._client

    def build_key(self, identity: str, content_type: str, source_id: str | None = None) -> str:
        ext = mimetypes.guess_extension(content_type.split(";")[0].strip()) or ".bin"
        owner = "".join(ch for ch in identity if ch.isalnum()) or "unknown"
        directory = self._settings.storage_directory.strip("/")
        source = "".join(ch for ch in source_id or "" if ch.isalnum() or ch in "-_")
        if source:
            return f"{directory}/{owner}/media/{source}{ext}"
        now = datetime.now(timezone.utc)
        return f"{directory}/{owner}/{now:%Y}/{now:%m}/{uuid.uuid4().hex}{ext}"

    def public_url(self, key: str) -> str:
        s = self._settings
        if s.storage_public_url:
            return f"{s.storage_public_url.rstrip('/')}/{key}"
        if s.storage_endpoint_url:
            return f"{s.storage_endpoint_url.rstrip('/')}/{s.storage_bucket}/{key}"
        return f"https://{s.storage_bucket}.s3.amazonaws.com/{key}"

    async def put(self, data: bytes, key: str, content_type: str) -> str:
        """Upload ``data`` under ``key`` and return its public URL.

        Raises:
            StorageError: If storage is not configured or the upload fails.
        """
        if not self.is_configured:
            raise StorageError("Object storage is not configured")

        def _upload() -> None:
            self._get_client().put_object(
                Bucket=self._settings.storage_bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                ACL="public-read",
            )

        try:
            await asyncio.to_thread(_upload)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Upload failed for {key}") from exc

        logger.info("Uploaded %d bytes to %s", len(data), key)
        return self.public_url(key)
