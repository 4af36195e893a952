"""Replicate prediction client for photo generation with error classification.

Photos are generated as asynchronous predictions: submit() creates one and
returns its id, check_status() resolves an id into pending, completed or
failed. The SDK is synchronous, so calls run in a worker thread.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import replicate
import structlog
from replicate.exceptions import ReplicateError as ReplicateAPIError

from avatarium.services.exceptions import (
    EngineError,
    EnginePermanentError,
    EngineTransientError,
)

logger = structlog.get_logger(__name__)


class EngineTaskState(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class TaskStatusResult:
    """Resolved state of one engine task."""

    state: EngineTaskState
    result_url: Optional[str] = None
    error: Optional[str] = None


# Replicate prediction statuses
_PENDING_STATUSES = {"starting", "processing"}
_FAILED_STATUSES = {"failed", "canceled", "aborted"}


def classify_error(exception: Exception) -> EngineError:
    """Classify exception into retry category.

    Args:
        exception: Original exception from Replicate SDK or network layer

    Returns:
        Classified EngineError subclass instance

    Classification rules:
        - Timeout errors → EngineTransientError
        - 429 (rate limit) → EngineTransientError
        - 5xx (service unavailable) → EngineTransientError
        - 401/403 (authentication) → EnginePermanentError
        - Content policy violations → EnginePermanentError
        - Connection errors → EngineTransientError
        - Anything else → EnginePermanentError
    """
    error_message = str(exception)
    error_message_lower = error_message.lower()

    if "timeout" in error_message_lower or "timed out" in error_message_lower:
        return EngineTransientError(f"Network timeout: {error_message}")

    if "429" in error_message or "rate limit" in error_message_lower:
        return EngineTransientError(f"Rate limit exceeded: {error_message}")

    if (
        "500" in error_message
        or "502" in error_message
        or "503" in error_message
        or "service unavailable" in error_message_lower
    ):
        return EngineTransientError(f"Service unavailable: {error_message}")

    if (
        "401" in error_message
        or "403" in error_message
        or "unauthorized" in error_message_lower
        or "forbidden" in error_message_lower
        or "authentication" in error_message_lower
        or "invalid api token" in error_message_lower
    ):
        return EnginePermanentError(f"Authentication failed: {error_message}")

    if (
        "content policy" in error_message_lower
        or "nsfw" in error_message_lower
        or "safety" in error_message_lower
    ):
        return EnginePermanentError(f"Content policy violation: {error_message}")

    if isinstance(exception, (ConnectionError, OSError)):
        return EngineTransientError(f"Connection error: {error_message}")

    return EnginePermanentError(f"Permanent error: {error_message}")


def extract_output_url(output: Any) -> Optional[str]:
    """Pull the image URL out of a prediction output (format varies by model)."""
    if isinstance(output, list) and len(output) > 0:
        return str(output[0])
    if isinstance(output, str) and output:
        return output
    return None


class GenerationClient:
    """Thin adapter over Replicate predictions.

    Args:
        api_token: Replicate API token
        model: Model identifier (owner/name)
        aspect_ratio: Output aspect ratio
        output_format: Output file format (jpg or png)
        client: Optional pre-built replicate.Client
    """

    def __init__(
        self,
        api_token: str,
        model: str = "google/nano-banana-pro",
        aspect_ratio: str = "3:4",
        output_format: str = "jpg",
        client: Optional[replicate.Client] = None,
    ):
        self.model = model
        self.aspect_ratio = aspect_ratio
        self.output_format = output_format
        self._api_token = api_token
        self._client = client or replicate.Client(api_token=api_token)

    async def submit(self, prompt: str, reference_images: list[str]) -> str:
        """Create a prediction and return its id.

        Raises:
            EnginePermanentError: Token missing or request rejected
            EngineTransientError: Network failure, rate limit or 5xx
        """
        if not self._api_token:
            raise EnginePermanentError("REPLICATE_API_TOKEN not configured")

        payload: dict[str, Any] = {
            "prompt": prompt,
            "aspect_ratio": self.aspect_ratio,
            "output_format": self.output_format,
        }
        if reference_images:
            payload["image_input"] = reference_images

        def _create() -> Any:
            return self._client.predictions.create(model=self.model, input=payload)

        try:
            prediction = await asyncio.to_thread(_create)
        except (ReplicateAPIError, ConnectionError, OSError, TimeoutError) as e:
            raise classify_error(e) from e
        except Exception as e:
            raise EnginePermanentError(f"Unexpected error: {e}") from e

        logger.debug("engine.prediction_created", prediction_id=prediction.id, model=self.model)
        return prediction.id

    async def check_status(self, external_task_id: str) -> TaskStatusResult:
        """Resolve a prediction id into pending, completed or failed.

        Raises:
            EngineError: The status call itself failed; the task state is unknown
        """

        def _get() -> Any:
            return self._client.predictions.get(external_task_id)

        try:
            prediction = await asyncio.to_thread(_get)
        except (ReplicateAPIError, ConnectionError, OSError, TimeoutError) as e:
            raise classify_error(e) from e

        status = prediction.status
        if status in _PENDING_STATUSES:
            return TaskStatusResult(state=EngineTaskState.PENDING)

        if status == "succeeded":
            url = extract_output_url(prediction.output)
            if not url:
                return TaskStatusResult(
                    state=EngineTaskState.FAILED, error="Prediction succeeded without output"
                )
            return TaskStatusResult(state=EngineTaskState.COMPLETED, result_url=url)

        if status in _FAILED_STATUSES:
            return TaskStatusResult(
                state=EngineTaskState.FAILED, error=str(prediction.error or f"Prediction {status}")
            )

        logger.warning("engine.unknown_status", prediction_id=external_task_id, status=status)
        return TaskStatusResult(state=EngineTaskState.PENDING)
