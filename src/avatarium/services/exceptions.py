"""Service error hierarchy for the generation pipeline.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- TransientError: Retryable errors (network, rate limits, timeouts)
- PermanentError: Non-retryable errors (authentication, validation)

Collaborator-specific errors subclass one of the two so callers can decide
between "try again next cycle" and "record the failure".
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


class TransientError(ServiceError):
    """Transient error that may succeed on retry.

    Examples:
    - Network timeouts
    - Rate limit exceeded (429)
    - Service unavailable (5xx)
    """

    pass


class PermanentError(ServiceError):
    """Permanent error that will not succeed on retry.

    Examples:
    - Authentication failures (401, 403)
    - Invalid request parameters (400, 422)
    - Configuration errors
    """

    pass


# Generation engine errors
class EngineError(ServiceError):
    """Base exception for image generation engine errors."""

    pass


class EngineTransientError(EngineError, TransientError):
    """Engine unreachable, rate limited or temporarily unavailable."""

    pass


class EnginePermanentError(EngineError, PermanentError):
    """Engine rejected the request (auth, validation, content policy)."""

    pass


# Object storage errors
class StorageError(ServiceError):
    """Base exception for object storage errors."""

    pass


class StorageDownloadError(StorageError, TransientError):
    """Source image could not be fetched."""

    pass


class StorageUploadError(StorageError, TransientError):
    """Upload to the bucket failed."""

    pass


# Payment processor errors
class RefundError(ServiceError):
    """Base exception for refund errors."""

    pass


class RefundNetworkError(RefundError, TransientError):
    """Payment processor unreachable or timed out."""

    pass


class RefundRejectedError(RefundError, PermanentError):
    """Payment processor answered with an error code."""

    pass


# Messaging errors
class DeliveryError(ServiceError):
    """Telegram Bot API call failed."""

    pass


# Durable queue errors
class QueuePublishError(TransientError):
    """Publishing a dispatch chunk to the queue failed."""

    pass


class AdmissionError(Exception):
    """Generation request rejected before any state is created.

    Attributes:
        code: Machine-readable reason (unknown_style, payment_required,
            insufficient_references, profile_not_found)
        message: Human-readable description
    """

    UNKNOWN_STYLE = "unknown_style"
    PAYMENT_REQUIRED = "payment_required"
    INSUFFICIENT_REFERENCES = "insufficient_references"
    PROFILE_NOT_FOUND = "profile_not_found"

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message
