"""Configuration for the index queue."""

import os
from datetime import timedelta
from typing import List, Optional


def _int_env(name: str, default: Optional[int]) -> Optional[int]:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {value!r}") from e


class IndexQueueConfig:
    """Configuration object for index queue workers."""

    def __init__(
        self,
        db_dsn: str,
        search_url: str,
        search_index: str = "documents",
        search_api_key: Optional[str] = None,
        search_timeout_seconds: int = 10,
        retry_interval_seconds: int = 60,
        max_retry_interval_seconds: Optional[int] = None,
        outage_delay_seconds: int = 30,
        idle_delay_seconds: int = 2,
        batch_size: int = 100,
        record_types: Optional[List[str]] = None,
        default_priority: int = 0,
        admin_auth_token: Optional[str] = None,
    ):
        if retry_interval_seconds <= 0:
            raise ValueError("retry_interval_seconds must be positive")
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")

        self.db_dsn = db_dsn
        self.search_url = search_url
        self.search_index = search_index
        self.search_api_key = search_api_key
        self.search_timeout_seconds = search_timeout_seconds
        self.retry_interval_seconds = retry_interval_seconds
        self.max_retry_interval_seconds = max_retry_interval_seconds
        self.outage_delay_seconds = outage_delay_seconds
        self.idle_delay_seconds = idle_delay_seconds
        self.batch_size = batch_size
        self.record_types = record_types or None
        self.default_priority = default_priority
        self.admin_auth_token = admin_auth_token

    @classmethod
    def from_env(cls) -> "IndexQueueConfig":
        """Create config from environment variables."""
        db_dsn = os.getenv("INDEX_QUEUE_DB_DSN")
        if not db_dsn:
            raise ValueError("INDEX_QUEUE_DB_DSN environment variable is required")

        search_url = os.getenv("INDEX_QUEUE_SEARCH_URL")
        if not search_url:
            raise ValueError("INDEX_QUEUE_SEARCH_URL environment variable is required")

        record_types_str = os.getenv("INDEX_QUEUE_RECORD_TYPES", "")
        record_types = [name.strip() for name in record_types_str.split(",") if name.strip()]

        return cls(
            db_dsn=db_dsn,
            search_url=search_url,
            search_index=os.getenv("INDEX_QUEUE_SEARCH_INDEX", "documents"),
            search_api_key=os.getenv("INDEX_QUEUE_SEARCH_API_KEY"),
            search_timeout_seconds=_int_env("INDEX_QUEUE_SEARCH_TIMEOUT_SECONDS", 10),
            retry_interval_seconds=_int_env("INDEX_QUEUE_RETRY_INTERVAL_SECONDS", 60),
            max_retry_interval_seconds=_int_env(
                "INDEX_QUEUE_MAX_RETRY_INTERVAL_SECONDS", None
            ),
            outage_delay_seconds=_int_env("INDEX_QUEUE_OUTAGE_DELAY_SECONDS", 30),
            idle_delay_seconds=_int_env("INDEX_QUEUE_IDLE_DELAY_SECONDS", 2),
            batch_size=_int_env("INDEX_QUEUE_BATCH_SIZE", 100),
            record_types=record_types,
            default_priority=_int_env("INDEX_QUEUE_DEFAULT_PRIORITY", 0),
            admin_auth_token=os.getenv("INDEX_QUEUE_ADMIN_AUTH_TOKEN"),
        )

    @property
    def retry_interval(self) -> timedelta:
        return timedelta(seconds=self.retry_interval_seconds)

    @property
    def max_retry_interval(self) -> Optional[timedelta]:
        if self.max_retry_interval_seconds is None:
            return None
        return timedelta(seconds=self.max_retry_interval_seconds)
