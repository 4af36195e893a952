"""S3-compatible object storage client (Cloudflare R2) for re-hosting photos.

Engine result URLs expire, so completed photos are copied into our bucket
and served from STORAGE_PUBLIC_URL. Callers treat every error here as
best-effort and fall back to the engine URL.
"""

import asyncio
from typing import Any, Optional
from uuid import UUID

import boto3
import httpx
from botocore.exceptions import BotoCoreError, ClientError

from avatarium.services.exceptions import StorageDownloadError, StorageUploadError

CONTENT_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
}


def generate_prompt_key(avatar_id: UUID, style_id: str, prompt_index: int, extension: str) -> str:
    """Object key for one photo; the prompt index keeps keys in output order."""
    return f"generations/{avatar_id}/{style_id}/{prompt_index:03d}.{extension.lower()}"


class ObjectStorageClient:
    """Upload-by-URL over an S3-compatible bucket."""

    def __init__(
        self,
        endpoint_url: str,
        access_key_id: str,
        secret_access_key: str,
        bucket: str,
        public_url: str,
        s3_client: Optional[Any] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize storage client.

        Args:
            endpoint_url: S3 API endpoint (R2 account endpoint)
            access_key_id: Access key id
            secret_access_key: Secret access key
            bucket: Bucket name
            public_url: Public base URL objects are served from
            s3_client: Optional pre-built boto3 S3 client
            transport: Optional httpx transport for the source download
        """
        self._bucket = bucket
        self._public_url = public_url.rstrip("/")
        self._transport = transport
        self._s3_client = s3_client or boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            region_name="auto",
        )

    def public_url_for(self, key: str) -> str:
        return f"{self._public_url}/{key}"

    async def upload_from_url(self, source_url: str, key: str) -> str:
        """Download source_url and store it under key.

        Returns:
            Public URL of the stored object

        Raises:
            StorageDownloadError: Source could not be fetched
            StorageUploadError: Bucket rejected the upload
        """
        try:
            async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
                response = await client.get(source_url, follow_redirects=True)
                response.raise_for_status()
                body = response.content
        except httpx.HTTPError as e:
            raise StorageDownloadError(f"Failed to download {source_url}: {e}") from e

        extension = key.rsplit(".", 1)[-1].lower()
        content_type = response.headers.get("content-type") or CONTENT_TYPES.get(
            extension, "application/octet-stream"
        )

        def _put() -> None:
            self._s3_client.put_object(
                Bucket=self._bucket, Key=key, Body=body, ContentType=content_type
            )

        try:
            await asyncio.to_thread(_put)
        except (ClientError, BotoCoreError) as e:
            raise StorageUploadError(f"Failed to upload {key}: {e}") from e

        return self.public_url_for(key)
