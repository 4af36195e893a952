"""Automatic refunds for failed generation jobs.

A refund is issued at most once per payment: the payment's refund_status is
moved from none to processing by a conditional update before the processor
is called, and every later attempt loses that race. Errors are reported in
the returned RefundOutcome and never raised, so a failed refund leaves the
job failed and the payment in its prior state for manual reconciliation.
"""

from dataclasses import dataclass
from typing import Callable, Optional
from uuid import UUID

import structlog

from avatarium.models.payment import Payment, PaymentStatus, RefundStatus
from avatarium.services.payments.tbank_client import TBankClient

logger = structlog.get_logger(__name__)


@dataclass
class RefundOutcome:
    """Result of one compensation attempt."""

    job_id: UUID
    refunded: bool
    reason: str
    payment_id: Optional[UUID] = None
    refund_id: Optional[str] = None
    error: Optional[str] = None


async def _find_payment(uow, job_id: UUID) -> tuple[Optional[Payment], Optional[str]]:
    job = await uow.jobs.get_by_id(job_id)
    if not job:
        return None, "job_not_found"

    if job.payment_id:
        payment = await uow.payments.get_by_id(job.payment_id)
        if payment:
            return payment, None

    avatar = await uow.avatars.get_by_id(job.avatar_id)
    if not avatar:
        return None, "payment_not_found"

    payment = await uow.payments.get_latest_succeeded_for_user(avatar.user_id)
    if not payment:
        return None, "payment_not_found"
    return payment, None


async def refund_job(
    uow_factory: Callable,
    payments_client: Optional[TBankClient],
    job_id: UUID,
    reason: str,
) -> RefundOutcome:
    """Refund the payment behind a failed job in full.

    The payment is the one linked to the job, or the owning user's most
    recent succeeded payment when the job carries no link.

    Args:
        uow_factory: UnitOfWork factory
        payments_client: Payment processor client, None when not configured
        job_id: Failed job
        reason: Refund reason stored on the payment

    Returns:
        RefundOutcome; refunded is True only when the processor confirmed
    """
    async with await uow_factory() as uow:
        payment, missing = await _find_payment(uow, job_id)

        if payment is None:
            logger.error("refund.payment_not_found", job_id=str(job_id), reason=missing)
            return RefundOutcome(
                job_id=job_id, refunded=False, reason=missing or "payment_not_found"
            )

        if (
            payment.status == PaymentStatus.REFUNDED
            or payment.refund_status == RefundStatus.COMPLETED
        ):
            logger.info(
                "refund.skipped",
                job_id=str(job_id),
                payment_id=str(payment.id),
                reason="already_refunded",
            )
            return RefundOutcome(
                job_id=job_id, refunded=False, reason="already_refunded", payment_id=payment.id
            )

        if payments_client is None:
            logger.error("refund.not_configured", job_id=str(job_id), payment_id=str(payment.id))
            return RefundOutcome(
                job_id=job_id, refunded=False, reason="not_configured", payment_id=payment.id
            )

        if not payment.provider_payment_id:
            logger.error(
                "refund.missing_provider_id", job_id=str(job_id), payment_id=str(payment.id)
            )
            return RefundOutcome(
                job_id=job_id,
                refunded=False,
                reason="missing_provider_payment_id",
                payment_id=payment.id,
            )

        locked = await uow.payments.lock_for_refund(payment.id, reason)
        if not locked:
            logger.info(
                "refund.skipped",
                job_id=str(job_id),
                payment_id=str(payment.id),
                reason="not_refundable",
                payment_status=payment.status.value,
                refund_status=payment.refund_status.value,
            )
            return RefundOutcome(
                job_id=job_id, refunded=False, reason="not_refundable", payment_id=payment.id
            )

        payment_id = payment.id
        provider_payment_id = payment.provider_payment_id
        amount_minor_units = payment.amount_minor_units

    # Lock committed; the processor is called outside any transaction
    try:
        result = await payments_client.refund(provider_payment_id, amount_minor_units)
    except Exception as e:
        async with await uow_factory() as uow:
            await uow.payments.mark_refund_failed(payment_id)
        logger.error(
            "refund.failed",
            job_id=str(job_id),
            payment_id=str(payment_id),
            error_type=type(e).__name__,
            error_message=str(e),
        )
        return RefundOutcome(
            job_id=job_id,
            refunded=False,
            reason="processor_error",
            payment_id=payment_id,
            error=str(e),
        )

    async with await uow_factory() as uow:
        await uow.payments.mark_refunded(payment_id)

    logger.info(
        "refund.succeeded",
        job_id=str(job_id),
        payment_id=str(payment_id),
        amount_minor_units=amount_minor_units,
        refund_id=result.refund_id,
    )
    return RefundOutcome(
        job_id=job_id,
        refunded=True,
        reason="refunded",
        payment_id=payment_id,
        refund_id=result.refund_id,
    )
