"""Scheduler entry points (bearer CRON_SECRET)."""

from dataclasses import asdict

import structlog
from fastapi import APIRouter, Depends

from avatarium.api.dependencies import (
    get_collaborators,
    get_settings,
    get_uow_factory,
    verify_cron_secret,
)
from avatarium.core.config import Settings
from avatarium.services.collaborators import Collaborators
from avatarium.services.stuck_jobs import sweep_stuck_jobs
from avatarium.workers.task_poller import poll_once

logger = structlog.get_logger()
router = APIRouter(
    prefix="/api/cron", tags=["cron"], dependencies=[Depends(verify_cron_secret)]
)


@router.get("/poll-tasks")
async def poll_tasks(
    uow_factory=Depends(get_uow_factory),
    settings: Settings = Depends(get_settings),
    collaborators: Collaborators = Depends(get_collaborators),
) -> dict:
    """Run one task poller pass followed by the completion aggregator."""
    summary = await poll_once(uow_factory, settings, collaborators)
    return {"status": "ok", **asdict(summary)}


@router.get("/check-stuck-jobs")
async def check_stuck_jobs(
    uow_factory=Depends(get_uow_factory),
    settings: Settings = Depends(get_settings),
    collaborators: Collaborators = Depends(get_collaborators),
) -> dict:
    """Fail and refund jobs that stopped making progress."""
    summary = await sweep_stuck_jobs(uow_factory, collaborators, settings)
    return {
        "status": "ok",
        "checked": summary.checked,
        "failed_job_ids": [str(job_id) for job_id in summary.failed_job_ids],
    }
