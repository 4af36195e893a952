"""FastAPI dependencies for request validation and common operations.

This module provides reusable FastAPI dependencies for:
- Queue callback signature validation
- Bearer-token checks for cron and admin triggers
- Access to the UoW factory and pipeline clients held in app.state
"""

import hmac
from typing import Annotated, Callable

from fastapi import Depends, Header, HTTPException, Request, status

from avatarium.core.config import Settings
from avatarium.services.collaborators import Collaborators
from avatarium.services.queue.job_signature import validate_job_signature as is_valid_signature
from avatarium.uow import UnitOfWork


def get_settings() -> Settings:
    """Get application settings instance.

    Built per request; nothing is cached between invocations.
    """
    return Settings()  # type: ignore[call-arg]  # Pydantic loads from env vars


def get_uow_factory(request: Request) -> Callable[[], UnitOfWork]:
    """Get UnitOfWork factory from app state.

    Example:
        >>> @router.get("/endpoint")
        >>> async def endpoint(uow_factory=Depends(get_uow_factory)):
        ...     async with await uow_factory() as uow:
        ...         await uow.jobs.get_by_id(job_id)
    """
    return request.app.state.uow_factory


def get_collaborators(request: Request) -> Collaborators:
    """Get external pipeline clients from app state."""
    return request.app.state.collaborators


def _bearer_matches(authorization: str | None, expected: str) -> bool:
    if not expected or not authorization or not authorization.startswith("Bearer "):
        return False
    return hmac.compare_digest(authorization[len("Bearer ") :], expected)


async def verify_cron_secret(
    authorization: Annotated[str | None, Header()] = None,
    settings: Settings = Depends(get_settings),
) -> None:
    """Require `Authorization: Bearer <CRON_SECRET>`.

    Raises:
        HTTPException: 401 if the secret is unset, missing or wrong
    """
    if not _bearer_matches(authorization, settings.cron_secret):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


async def verify_admin_token(
    authorization: Annotated[str | None, Header()] = None,
    settings: Settings = Depends(get_settings),
) -> None:
    """Require `Authorization: Bearer <ADMIN_API_TOKEN>`.

    Raises:
        HTTPException: 401 if the token is unset, missing or wrong
    """
    if not _bearer_matches(authorization, settings.admin_api_token):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


async def validate_job_signature(
    request: Request,
    x_job_signature: Annotated[str | None, Header()] = None,
    settings: Settings = Depends(get_settings),
) -> bytes:
    """Validate a dispatch chunk callback before processing it.

    Reads the raw body and checks its HMAC-SHA256 signature from the
    X-Job-Signature header against JOB_CALLBACK_SECRET.

    Returns:
        Raw request body bytes (for further processing by the endpoint)

    Raises:
        HTTPException: 401 Unauthorized if signature is missing or invalid
    """
    if not x_job_signature:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-Job-Signature header"
        )

    raw_body = await request.body()

    if not is_valid_signature(raw_body, x_job_signature, settings.job_callback_secret):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid job signature"
        )

    return raw_body
