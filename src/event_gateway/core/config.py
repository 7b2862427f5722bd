"""
Configuration settings for the Event Gateway.

Settings are constructed once at startup and passed by reference to the
components that need them. Values are read from environment variables and an
optional .env file.
"""
from typing import Dict, List, Literal, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ONE_MIB = 1024 * 1024


class Settings(BaseSettings):
    """
    Event Gateway configuration loaded from environment variables.

    Defaults are suitable for local development with the in-memory sink
    backend. Production deployments should set SINK_BACKEND=jetstream and
    point NATS_URL at the managed cluster.
    """
    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service settings
    service_name: str = "event-gateway"
    service_version: str = "0.1.0"
    service_port: int = 8080
    debug: bool = False

    # Ingress
    max_body_bytes: int = Field(default=ONE_MIB, gt=0)
    accepted_content_types: List[str] = [
        "application/json",
        "application/octet-stream",
        "text/plain",
    ]
    retry_after_seconds: int = Field(default=1, ge=0)

    # Broker
    high_water_mark: int = Field(default=1000, gt=0)
    dispatch_workers: int = Field(default=8, gt=0)
    # "memory" keeps pending events in process only; "jetstream" journals them
    broker_buffer: Literal["memory", "jetstream"] = "memory"
    journal_stream: str = "gateway-journal"

    # Delivery
    max_attempts: int = Field(default=5, gt=0)
    base_backoff_ms: float = Field(default=100, ge=0)
    max_backoff_ms: float = Field(default=30_000, ge=0)
    jitter_fraction: float = Field(default=0.2, ge=0.0, le=1.0)
    sink_timeout_seconds: float = Field(default=10.0, gt=0)
    completed_outcome_ttl_seconds: float = Field(default=300, gt=0)
    completed_outcome_max_entries: int = Field(default=100_000, gt=0)
    strict_invariants: bool = False

    # Sinks
    sink_backend: Literal["memory", "jetstream"] = "memory"
    nats_url: str = "nats://localhost:4222"
    nats_subject_prefix: str = "gateway.queues"
    nats_connect_timeout: int = 2  # seconds
    nats_max_reconnect_attempts: int = -1  # -1 = infinite

    # Topic -> queue names. Each queue name becomes one durable sink.
    subscriptions: Dict[str, List[str]] = {"events": ["events"]}
    dead_letter_queue: Optional[str] = None

    @field_validator("accepted_content_types")
    @classmethod
    def _normalize_content_types(cls, value: List[str]) -> List[str]:
        normalized = [v.split(";")[0].strip().lower() for v in value if v.strip()]
        if not normalized:
            raise ValueError("accepted_content_types must not be empty")
        return normalized

    @model_validator(mode="after")
    def _check_backoff_bounds(self) -> "Settings":
        if self.max_backoff_ms < self.base_backoff_ms:
            raise ValueError("max_backoff_ms must be >= base_backoff_ms")
        return self


# Global settings instance
settings = Settings()
