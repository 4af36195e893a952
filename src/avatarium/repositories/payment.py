"""Payment repository with the admission claim and the refund lock used by compensation."""

from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from avatarium.core.timezone import utcnow
from avatarium.models.generation_job import GenerationJob, JobStatus
from avatarium.models.payment import Payment, PaymentStatus, RefundStatus


class PaymentRepository:
    """Repository for Payment entities.

    Refund bookkeeping is guarded by refund_status: lock_for_refund moves it
    from none to processing in one conditional UPDATE, so only one
    compensation attempt ever reaches the payment processor.
    Admission is guarded the same way by claimed_job_id: one payment backs
    at most one live job.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, payment: Payment) -> Payment:
        self.session.add(payment)
        await self.session.flush()
        return payment

    async def get_by_id(self, payment_id: UUID) -> Payment | None:
        result = await self.session.execute(
            select(Payment).where(Payment.id == payment_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_latest_succeeded_for_user(self, user_id: UUID) -> Payment | None:
        """Retrieve the user's most recent succeeded payment.

        Used when a job carries no direct payment link.
        """
        result = await self.session.execute(
            select(Payment)
            .where(Payment.user_id == user_id)  # type: ignore[arg-type]
            .where(Payment.status == PaymentStatus.SUCCEEDED)  # type: ignore[arg-type]
            .order_by(Payment.created_at.desc())  # type: ignore[attr-defined]
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_succeeded_for_user(self, user_id: UUID) -> list[Payment]:
        """Retrieve the user's succeeded payments, newest first."""
        result = await self.session.execute(
            select(Payment)
            .where(Payment.user_id == user_id)  # type: ignore[arg-type]
            .where(Payment.status == PaymentStatus.SUCCEEDED)  # type: ignore[arg-type]
            .order_by(Payment.created_at.desc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def claim_for_job(self, payment_id: UUID, job_id: UUID) -> bool:
        """Bind a succeeded payment to the job being admitted against it.

        Query:
            UPDATE payments
            SET claimed_job_id = :job_id
            WHERE id = :payment_id AND status = 'succeeded'
              AND (claimed_job_id IS NULL
                   OR claimed_job_id IN (SELECT id FROM generation_jobs
                                         WHERE status IN ('failed', 'cancelled')))

        A payment whose job failed or was cancelled without a refund can
        be claimed again.

        Returns:
            True if this caller now holds the payment
        """
        released = [JobStatus.FAILED, JobStatus.CANCELLED]
        released_jobs = select(GenerationJob.id).where(
            GenerationJob.status.in_(released)  # type: ignore[attr-defined]
        )
        result = await self.session.execute(
            update(Payment)
            .where(Payment.id == payment_id)  # type: ignore[arg-type]
            .where(Payment.status == PaymentStatus.SUCCEEDED)  # type: ignore[arg-type]
            .where(
                or_(
                    Payment.claimed_job_id.is_(None),  # type: ignore[union-attr]
                    Payment.claimed_job_id.in_(released_jobs),  # type: ignore[union-attr]
                )
            )
            .values(claimed_job_id=job_id, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def lock_for_refund(self, payment_id: UUID, reason: str) -> bool:
        """Take the refund lock on a succeeded, not yet refunded payment.

        Query:
            UPDATE payments
            SET refund_status = 'processing', refund_reason = :reason
            WHERE id = :payment_id AND status = 'succeeded' AND refund_status = 'none'

        A payment whose earlier refund failed keeps refund_status 'failed' and
        is left for manual reconciliation.

        Returns:
            True if this caller holds the lock
        """
        result = await self.session.execute(
            update(Payment)
            .where(Payment.id == payment_id)  # type: ignore[arg-type]
            .where(Payment.status == PaymentStatus.SUCCEEDED)  # type: ignore[arg-type]
            .where(Payment.refund_status == RefundStatus.NONE)  # type: ignore[arg-type]
            .values(
                refund_status=RefundStatus.PROCESSING,
                refund_reason=reason[:500],
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def mark_refunded(self, payment_id: UUID) -> bool:
        """Record a completed refund for a locked payment."""
        now = utcnow()
        result = await self.session.execute(
            update(Payment)
            .where(Payment.id == payment_id)  # type: ignore[arg-type]
            .where(Payment.refund_status == RefundStatus.PROCESSING)  # type: ignore[arg-type]
            .values(
                status=PaymentStatus.REFUNDED,
                refund_status=RefundStatus.COMPLETED,
                refund_amount=Payment.amount,
                refunded_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def mark_refund_failed(self, payment_id: UUID) -> bool:
        """Release the lock into 'failed'; payment status stays as it was."""
        result = await self.session.execute(
            update(Payment)
            .where(Payment.id == payment_id)  # type: ignore[arg-type]
            .where(Payment.refund_status == RefundStatus.PROCESSING)  # type: ignore[arg-type]
            .values(refund_status=RefundStatus.FAILED, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
        return result.rowcount == 1  # type: ignore[attr-defined]
