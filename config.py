"""Application configuration."""
import os
from dataclasses import dataclass, field
from typing import List, Optional

DEFAULT_ALLOWED_SOURCE_TABLES = [
    "CUSTOMER",
    "CUSTOMER_ADDRESS",
    "CUSTOMER_CONTACT",
    "ORDER_HEADER",
    "ORDER_DETAIL",
    "PRODUCT",
    "INVENTORY",
    "TRANSACTION",
    "ACCOUNT",
    "PAYMENT",
]


def _env_int(name: str, default: int) -> int:
    """Read an int from the environment; malformed values fall back to default."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [item.strip().upper() for item in raw.split(",") if item.strip()]


@dataclass
class HttpConfig:
    """Outbound HTTP settings."""

    timeout_seconds: int = 300  # used when a tenant has no override
    user_agent: Optional[str] = None

    @classmethod
    def from_env(cls) -> "HttpConfig":
        """Load config from environment variables."""
        return cls(
            timeout_seconds=_env_int("RELAY_HTTP_TIMEOUT_SECONDS", 300),
            user_agent=os.getenv("RELAY_HTTP_USER_AGENT") or None,
        )


@dataclass
class RetryPolicy:
    """Retry queue policy: 360 attempts one hour apart is a ~15 day horizon."""

    max_attempts: int = 360
    interval_hours: int = 1
    sweep_seconds: int = 60
    batch_size: int = 100
    retention_days: int = 30
    claim_timeout_seconds: int = 900
    workers: int = 4

    @classmethod
    def from_env(cls) -> "RetryPolicy":
        """Load config from environment variables."""
        return cls(
            max_attempts=_env_int("RELAY_RETRY_MAX_ATTEMPTS", 360),
            interval_hours=_env_int("RELAY_RETRY_INTERVAL_HOURS", 1),
            sweep_seconds=_env_int("RELAY_RETRY_SWEEP_SECONDS", 60),
            batch_size=_env_int("RELAY_RETRY_BATCH_SIZE", 100),
            retention_days=_env_int("RELAY_RETRY_RETENTION_DAYS", 30),
            claim_timeout_seconds=_env_int("RELAY_RETRY_CLAIM_TIMEOUT_SECONDS", 900),
            workers=_env_int("RELAY_RETRY_WORKERS", 4),
        )


@dataclass
class WorkerConfig:
    """Worker pool for first-attempt invocations."""

    invocation_workers: int = 8

    @classmethod
    def from_env(cls) -> "WorkerConfig":
        """Load config from environment variables."""
        return cls(invocation_workers=_env_int("RELAY_INVOCATION_WORKERS", 8))


@dataclass
class StoreConfig:
    """Durable store and source-data access."""

    db_path: str = "./data/relay.sqlite"
    allowed_source_tables: List[str] = field(
        default_factory=lambda: list(DEFAULT_ALLOWED_SOURCE_TABLES)
    )
    id_column: str = "ID"

    @classmethod
    def from_env(cls) -> "StoreConfig":
        """Load config from environment variables."""
        return cls(
            db_path=os.getenv("RELAY_DB_PATH", "./data/relay.sqlite"),
            allowed_source_tables=_env_list(
                "RELAY_ALLOWED_SOURCE_TABLES", DEFAULT_ALLOWED_SOURCE_TABLES
            ),
        )


@dataclass
class AppConfig:
    """Application configuration."""

    log_level: str = "INFO"
    http: HttpConfig = None
    retry: RetryPolicy = None
    workers: WorkerConfig = None
    store: StoreConfig = None

    def __post_init__(self):
        """Initialize default values."""
        if self.http is None:
            self.http = HttpConfig.from_env()
        if self.retry is None:
            self.retry = RetryPolicy.from_env()
        if self.workers is None:
            self.workers = WorkerConfig.from_env()
        if self.store is None:
            self.store = StoreConfig.from_env()

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Load config from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            http=HttpConfig.from_env(),
            retry=RetryPolicy.from_env(),
            workers=WorkerConfig.from_env(),
            store=StoreConfig.from_env(),
        )


# Global instance
app_config = AppConfig.from_env()
