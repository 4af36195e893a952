"""External collaborators of the generation pipeline, built from settings."""

from dataclasses import dataclass
from typing import Optional

from avatarium.core.config import Settings
from avatarium.services.image_generation.replicate_client import GenerationClient
from avatarium.services.payments.tbank_client import TBankClient
from avatarium.services.queue.qstash_client import QStashClient
from avatarium.services.storage.r2_client import ObjectStorageClient
from avatarium.services.telegram.bot_client import TelegramBotClient


@dataclass
class Collaborators:
    """Clients the pipeline talks to.

    Optional members are None when their configuration is absent: no
    re-hosting, no refunds, no delivery or inline dispatch respectively.
    """

    engine: GenerationClient
    storage: Optional[ObjectStorageClient] = None
    payments: Optional[TBankClient] = None
    messenger: Optional[TelegramBotClient] = None
    queue: Optional[QStashClient] = None


def build_collaborators(settings: Settings) -> Collaborators:
    engine = GenerationClient(
        api_token=settings.replicate_api_token,
        model=settings.replicate_model,
        aspect_ratio=settings.generation_aspect_ratio,
        output_format=settings.generation_output_format,
    )

    storage = None
    if settings.storage_enabled:
        storage = ObjectStorageClient(
            endpoint_url=settings.storage_endpoint_url,
            access_key_id=settings.storage_access_key_id,
            secret_access_key=settings.storage_secret_access_key,
            bucket=settings.storage_bucket,
            public_url=settings.storage_public_url,
        )

    payments = None
    if settings.tbank_terminal_key and settings.tbank_password:
        payments = TBankClient(
            terminal_key=settings.tbank_terminal_key,
            password=settings.tbank_password,
            api_url=settings.tbank_api_url,
        )

    messenger = None
    if settings.telegram_enabled:
        messenger = TelegramBotClient(bot_token=settings.telegram_bot_token)

    queue = None
    if settings.queue_enabled:
        queue = QStashClient(
            token=settings.qstash_token,
            callback_secret=settings.job_callback_secret,
            callback_url=f"{settings.app_base_url.rstrip('/')}/api/jobs/process",
            qstash_url=settings.qstash_url,
        )

    return Collaborators(
        engine=engine, storage=storage, payments=payments, messenger=messenger, queue=queue
    )
