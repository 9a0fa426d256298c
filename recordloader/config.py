from datetime import timedelta
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import Operation, TransportKind

SYNC_DEFAULT_BATCH_SIZE = 200
BULK_DEFAULT_BATCH_SIZE = 2000


class Settings(BaseSettings):
    """Runtime configuration for a load process."""

    model_config = SettingsConfigDict(env_prefix="LOADER_")

    transport: TransportKind = TransportKind.SYNCHRONOUS
    operation: Operation = Operation.INSERT
    target_object_type: str = "Task"
    max_batch_size: Optional[int] = Field(default=None, ge=1)  # None picks the transport default
    max_concurrency: int = Field(default=4, ge=1)
    bulk_job_timeout: timedelta = timedelta(minutes=5)
    bulk_poll_interval: timedelta = timedelta(seconds=1)
    retry_max_attempts: int = 3
    retry_base_delay: float = 0.5
    retry_max_delay: float = 10.0
    log_level: str = "INFO"
    log_format: str = "console"  # options: console, json


settings = Settings()
