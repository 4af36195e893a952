"""Payment entity - local record of a payment held by the payment processor."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Column, Numeric
from sqlmodel import Field, SQLModel

from avatarium.core.timezone import utcnow


class PaymentStatus(str, Enum):
    """Payment status as confirmed by the processor."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    CANCELED = "canceled"
    REFUNDED = "refunded"


class RefundStatus(str, Enum):
    """Refund progress; `processing` is the lock held while the processor is called."""

    NONE = "none"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Payment(SQLModel, table=True):
    """Payment made by a user for a generation tier."""

    __tablename__ = "payments"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    provider: str = Field(default="tbank", max_length=50)
    provider_payment_id: Optional[str] = Field(default=None, max_length=255)
    amount: Decimal = Field(sa_column=Column(Numeric(12, 2), nullable=False))
    currency: str = Field(default="RUB", max_length=3)
    status: PaymentStatus = Field(default=PaymentStatus.PENDING, index=True)
    refund_status: RefundStatus = Field(default=RefundStatus.NONE)
    refund_reason: Optional[str] = Field(default=None, max_length=500)
    refund_amount: Optional[Decimal] = Field(default=None, sa_column=Column(Numeric(12, 2)))
    refunded_at: Optional[datetime] = Field(default=None)
    # Job admitted against this payment; no FK, the job row is written after the claim
    claimed_job_id: Optional[UUID] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def amount_minor_units(self) -> int:
        """Amount in minor currency units (kopecks, cents)."""
        return int((self.amount * 100).to_integral_value())
