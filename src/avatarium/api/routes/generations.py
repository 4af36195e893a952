"""Generation job API endpoints.

This module implements the job admission surface used by the checkout flow:
- POST /api/generate - Admit a paid generation request and schedule its dispatch
- GET /api/generate/{job_id} - Job status with progress and photo URLs

Admission errors are returned synchronously and create no state.
"""

from datetime import datetime
from typing import Callable, Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from pydantic import BaseModel, Field

from avatarium.api.dependencies import get_collaborators, get_settings, get_uow_factory
from avatarium.core.config import Settings
from avatarium.models.generation_task import TaskStatus
from avatarium.services.collaborators import Collaborators
from avatarium.services.dispatcher import (
    AdmissionRequest,
    admit_job,
    publish_first_chunk,
    run_job_inline,
)
from avatarium.services.exceptions import AdmissionError

logger = structlog.get_logger()
router = APIRouter(prefix="/api/generate", tags=["generations"])

ADMISSION_STATUS_CODES = {
    AdmissionError.UNKNOWN_STYLE: status.HTTP_400_BAD_REQUEST,
    AdmissionError.INSUFFICIENT_REFERENCES: status.HTTP_400_BAD_REQUEST,
    AdmissionError.PAYMENT_REQUIRED: status.HTTP_402_PAYMENT_REQUIRED,
    AdmissionError.PROFILE_NOT_FOUND: status.HTTP_404_NOT_FOUND,
}


# Request/Response Models


class GenerateRequest(BaseModel):
    """Paid generation request from the checkout flow."""

    avatar_id: UUID
    style_id: str = Field(..., min_length=1, max_length=100)
    reference_images: list[str] = Field(..., min_length=1, max_length=50)
    photo_count: Optional[int] = Field(default=None, ge=1, le=100)
    payment_id: Optional[UUID] = None


class GenerateResponse(BaseModel):
    job_id: UUID
    status: str
    total_photos: int
    dispatch: str


class JobStatusResponse(BaseModel):
    """Job status with per-task progress."""

    job_id: UUID
    avatar_id: UUID
    style_id: str
    status: str
    total_photos: int
    completed_photos: int
    failed_photos: int
    pending_photos: int
    error_message: Optional[str]
    photos: list[str]
    created_at: datetime
    updated_at: datetime


async def schedule_dispatch(
    background_tasks: BackgroundTasks,
    uow_factory: Callable,
    settings: Settings,
    collaborators: Collaborators,
    job_id: UUID,
) -> str:
    """Queue chunk 0 of a job, or run it inline after the response is sent.

    Returns:
        "queued" or "inline"
    """
    if await publish_first_chunk(collaborators, settings, job_id):
        return "queued"

    background_tasks.add_task(run_job_inline, uow_factory, settings, collaborators, job_id)
    return "inline"


@router.post("", response_model=GenerateResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_generation(
    request: GenerateRequest,
    background_tasks: BackgroundTasks,
    uow_factory=Depends(get_uow_factory),
    settings: Settings = Depends(get_settings),
    collaborators: Collaborators = Depends(get_collaborators),
) -> GenerateResponse:
    """Admit a generation request.

    Returns:
        202 with the job id; dispatch continues asynchronously

    Raises:
        HTTPException: 400 unknown style / too few references,
            402 no succeeded payment, 404 unknown avatar
    """
    try:
        job = await admit_job(
            uow_factory,
            settings,
            AdmissionRequest(
                avatar_id=request.avatar_id,
                style_id=request.style_id,
                reference_images=request.reference_images,
                photo_count=request.photo_count,
                payment_id=request.payment_id,
            ),
        )
    except AdmissionError as e:
        logger.info("job.admission_rejected", code=e.code, avatar_id=str(request.avatar_id))
        raise HTTPException(
            status_code=ADMISSION_STATUS_CODES.get(e.code, status.HTTP_400_BAD_REQUEST),
            detail={"code": e.code, "message": e.message},
        )

    dispatch = await schedule_dispatch(
        background_tasks, uow_factory, settings, collaborators, job.id
    )

    return GenerateResponse(
        job_id=job.id, status=job.status.value, total_photos=job.total_photos, dispatch=dispatch
    )


@router.get("/{job_id}", response_model=JobStatusResponse)
async def get_generation(job_id: UUID, uow_factory=Depends(get_uow_factory)) -> JobStatusResponse:
    """Return job status, task progress and the photos produced so far.

    Raises:
        HTTPException: 404 if the job does not exist
    """
    async with await uow_factory() as uow:
        job = await uow.jobs.get_by_id(job_id)
        if not job:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
        counts = (await uow.tasks.count_by_status([job_id])).get(job_id, {})
        photos = await uow.photos.list_for_avatar_style(job.avatar_id, job.style_id)

    return JobStatusResponse(
        job_id=job.id,
        avatar_id=job.avatar_id,
        style_id=job.style_id,
        status=job.status.value,
        total_photos=job.total_photos,
        completed_photos=counts.get(TaskStatus.COMPLETED, 0),
        failed_photos=counts.get(TaskStatus.FAILED, 0),
        pending_photos=counts.get(TaskStatus.PENDING, 0),
        error_message=job.error_message,
        photos=[photo.image_url for photo in photos],
        created_at=job.created_at,
        updated_at=job.updated_at,
    )
