"""QStash publisher for durable, chunked job dispatch.

Each message asks the callback endpoint to submit one contiguous range of a
job's prompt indices. QStash retries delivery until the endpoint answers
2xx, so a chunk may arrive more than once.
"""

from typing import Optional
from uuid import UUID

import httpx
import structlog
from pydantic import BaseModel, Field

from avatarium.services.exceptions import QueuePublishError
from avatarium.services.queue.job_signature import sign_job_payload

logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "X-Job-Signature"


class ChunkPayload(BaseModel):
    """Body of one dispatch chunk message."""

    job_id: UUID
    start_index: int = Field(ge=0)
    chunk_size: int = Field(gt=0)


class QStashClient:
    """Publishes chunk messages to QStash over its REST API."""

    def __init__(
        self,
        token: str,
        callback_secret: str,
        callback_url: str,
        qstash_url: str = "https://qstash.upstash.io",
        retries: int = 3,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize QStash client.

        Args:
            token: QSTASH_TOKEN
            callback_secret: JOB_CALLBACK_SECRET used to sign chunk bodies
            callback_url: Absolute URL of POST /api/jobs/process
            qstash_url: QStash API base URL
            retries: Delivery retries QStash performs per message
            transport: Optional httpx transport (tests)
        """
        self._token = token
        self._secret = callback_secret
        self.callback_url = callback_url
        self.qstash_url = qstash_url.rstrip("/")
        self.retries = retries
        self._transport = transport

    async def publish_chunk(self, payload: ChunkPayload) -> str:
        """Publish one chunk message.

        Returns:
            QStash message id

        Raises:
            QueuePublishError: QStash unreachable or rejected the message
        """
        body = payload.model_dump_json().encode("utf-8")
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/json",
            "Upstash-Retries": str(self.retries),
            "Upstash-Timeout": "5m",
            f"Upstash-Forward-{SIGNATURE_HEADER}": sign_job_payload(body, self._secret),
        }

        try:
            async with httpx.AsyncClient(timeout=15.0, transport=self._transport) as client:
                response = await client.post(
                    f"{self.qstash_url}/v2/publish/{self.callback_url}",
                    content=body,
                    headers=headers,
                )
        except httpx.HTTPError as e:
            raise QueuePublishError(f"QStash network error: {e}") from e

        if response.status_code >= 300:
            raise QueuePublishError(
                f"QStash rejected publish ({response.status_code}): {response.text}"
            )

        message_id = response.json().get("messageId", "")
        logger.info(
            "queue.chunk_published",
            job_id=str(payload.job_id),
            start_index=payload.start_index,
            chunk_size=payload.chunk_size,
            message_id=message_id,
        )
        return message_id
