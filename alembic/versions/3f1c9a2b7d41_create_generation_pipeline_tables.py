"""create_generation_pipeline_tables

Revision ID: 3f1c9a2b7d41
Revises:
Create Date: 2026-10-18 09:12:40.118206

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f1c9a2b7d41"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Enum columns store member names, matching SQLModel's default mapping
avatar_status = sa.Enum("DRAFT", "PROCESSING", "READY", name="avatarstatus")
payment_status = sa.Enum("PENDING", "SUCCEEDED", "CANCELED", "REFUNDED", name="paymentstatus")
refund_status = sa.Enum("NONE", "PROCESSING", "COMPLETED", "FAILED", name="refundstatus")
job_status = sa.Enum(
    "PENDING", "PROCESSING", "COMPLETED", "FAILED", "CANCELLED", name="jobstatus"
)
task_status = sa.Enum("PENDING", "COMPLETED", "FAILED", name="taskstatus")
message_kind = sa.Enum("PHOTO", "MEDIA_GROUP", name="messagekind")
delivery_status = sa.Enum("SENT", "FAILED", name="deliverystatus")


def upgrade() -> None:
    """Create users, avatars, payments, jobs, tasks, photos and message tables."""
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("device_id", sa.String(length=255), nullable=True),
        sa.Column("telegram_user_id", sa.BigInteger(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("telegram_user_id"),
    )
    op.create_index("ix_users_device_id", "users", ["device_id"])

    op.create_table(
        "avatars",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("status", avatar_status, nullable=False),
        sa.Column("thumbnail_url", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_avatars_user_id", "avatars", ["user_id"])

    op.create_table(
        "payments",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("provider", sa.String(length=50), nullable=False),
        sa.Column("provider_payment_id", sa.String(length=255), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("status", payment_status, nullable=False),
        sa.Column("refund_status", refund_status, nullable=False),
        sa.Column("refund_reason", sa.String(length=500), nullable=True),
        sa.Column("refund_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("refunded_at", sa.DateTime(), nullable=True),
        sa.Column("claimed_job_id", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_payments_user_id", "payments", ["user_id"])
    op.create_index("ix_payments_status", "payments", ["status"])
    op.create_index("ix_payments_claimed_job_id", "payments", ["claimed_job_id"])

    op.create_table(
        "generation_jobs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("avatar_id", sa.Uuid(), nullable=False),
        sa.Column("style_id", sa.String(length=100), nullable=False),
        sa.Column("status", job_status, nullable=False),
        sa.Column("total_photos", sa.Integer(), nullable=False),
        sa.Column("completed_photos", sa.Integer(), nullable=False),
        sa.Column("error_message", sa.String(length=1000), nullable=True),
        sa.Column("payment_id", sa.Uuid(), nullable=True),
        sa.Column("reference_images", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["avatar_id"], ["avatars.id"]),
        sa.ForeignKeyConstraint(["payment_id"], ["payments.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_generation_jobs_avatar_id", "generation_jobs", ["avatar_id"])
    op.create_index("ix_generation_jobs_status", "generation_jobs", ["status"])

    op.create_table(
        "generation_tasks",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("job_id", sa.Uuid(), nullable=False),
        sa.Column("prompt_index", sa.Integer(), nullable=False),
        sa.Column("prompt", sa.Text(), nullable=False),
        sa.Column("status", task_status, nullable=False),
        sa.Column("external_task_id", sa.String(length=255), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("result_url", sa.String(), nullable=True),
        sa.Column("error_message", sa.String(length=1000), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["job_id"], ["generation_jobs.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("job_id", "prompt_index", name="uq_generation_tasks_job_prompt"),
    )
    op.create_index("ix_generation_tasks_job_id", "generation_tasks", ["job_id"])
    op.create_index("ix_generation_tasks_status", "generation_tasks", ["status"])
    op.create_index("ix_generation_tasks_created_at", "generation_tasks", ["created_at"])

    op.create_table(
        "generated_photos",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("avatar_id", sa.Uuid(), nullable=False),
        sa.Column("style_id", sa.String(length=100), nullable=False),
        sa.Column("prompt", sa.Text(), nullable=False),
        sa.Column("image_url", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["avatar_id"], ["avatars.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_generated_photos_avatar_id", "generated_photos", ["avatar_id"])

    op.create_table(
        "telegram_messages",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("job_id", sa.Uuid(), nullable=True),
        sa.Column("chat_id", sa.BigInteger(), nullable=False),
        sa.Column("message_kind", message_kind, nullable=False),
        sa.Column("photo_url", sa.String(), nullable=False),
        sa.Column("caption", sa.String(), nullable=True),
        sa.Column("status", delivery_status, nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("error_message", sa.String(length=1000), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("sent_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["job_id"], ["generation_jobs.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_telegram_messages_job_id", "telegram_messages", ["job_id"])
    op.create_index("ix_telegram_messages_chat_id", "telegram_messages", ["chat_id"])


def downgrade() -> None:
    """Drop all generation pipeline tables and enum types."""
    op.drop_table("telegram_messages")
    op.drop_table("generated_photos")
    op.drop_table("generation_tasks")
    op.drop_table("generation_jobs")
    op.drop_table("payments")
    op.drop_table("avatars")
    op.drop_table("users")

    bind = op.get_bind()
    for enum in (
        delivery_status,
        message_kind,
        task_status,
        job_status,
        refund_status,
        payment_status,
        avatar_status,
    ):
        enum.drop(bind, checkfirst=True)
