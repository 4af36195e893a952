"""Admin endpoints (bearer ADMIN_API_TOKEN)."""

from uuid import UUID

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status

from avatarium.api.dependencies import (
    get_collaborators,
    get_settings,
    get_uow_factory,
    verify_admin_token,
)
from avatarium.api.routes.generations import schedule_dispatch
from avatarium.core.config import Settings
from avatarium.services.collaborators import Collaborators
from avatarium.services.dispatcher import retry_job

logger = structlog.get_logger()
router = APIRouter(
    prefix="/api/admin", tags=["admin"], dependencies=[Depends(verify_admin_token)]
)


@router.post("/generations/{job_id}/retry", status_code=status.HTTP_202_ACCEPTED)
async def retry_generation(
    job_id: UUID,
    background_tasks: BackgroundTasks,
    uow_factory=Depends(get_uow_factory),
    settings: Settings = Depends(get_settings),
    collaborators: Collaborators = Depends(get_collaborators),
) -> dict:
    """Reset a terminal job to pending and dispatch it again.

    Raises:
        HTTPException: 404 if the job does not exist, 409 if it is still active
    """
    job = await retry_job(uow_factory, job_id)
    if job is None:
        async with await uow_factory() as uow:
            existing = await uow.jobs.get_by_id(job_id)
        if existing is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Job is {existing.status.value}; only finished jobs can be retried",
        )

    dispatch = await schedule_dispatch(
        background_tasks, uow_factory, settings, collaborators, job_id
    )
    logger.info("admin.retry_scheduled", job_id=str(job_id), dispatch=dispatch)
    return {"status": "pending", "job_id": str(job_id), "dispatch": dispatch}
