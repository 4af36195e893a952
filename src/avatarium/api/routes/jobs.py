"""Durable-queue callback for chunked dispatch.

POST /api/jobs/process receives one chunk message. The body is trusted only
after its X-Job-Signature HMAC has been validated.
"""

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import ValidationError

from avatarium.api.dependencies import (
    get_collaborators,
    get_settings,
    get_uow_factory,
    validate_job_signature,
)
from avatarium.core.config import Settings
from avatarium.services.collaborators import Collaborators
from avatarium.services.dispatcher import process_chunk
from avatarium.services.queue.qstash_client import ChunkPayload

logger = structlog.get_logger()
router = APIRouter(prefix="/api/jobs", tags=["jobs"])


@router.post("/process")
async def process_job_chunk(
    raw_body: bytes = Depends(validate_job_signature),
    uow_factory=Depends(get_uow_factory),
    settings: Settings = Depends(get_settings),
    collaborators: Collaborators = Depends(get_collaborators),
) -> dict:
    """Submit one chunk of a job's units.

    Duplicate and out-of-date deliveries are acknowledged with status
    "skipped" so the queue stops redelivering them.

    Raises:
        HTTPException: 400 if the body is not a valid chunk message
    """
    try:
        payload = ChunkPayload.model_validate_json(raw_body)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid chunk payload: {e}"
        )

    summary = await process_chunk(uow_factory, settings, collaborators, payload)
    if summary is None:
        return {"status": "skipped", "job_id": str(payload.job_id)}

    return {
        "status": "ok",
        "job_id": str(payload.job_id),
        "submitted": summary.submitted,
        "failed": summary.failed,
        "skipped": summary.skipped,
    }
