"""Runtime configuration for the analysis pipeline.

Every knob is read from ``MEMOLENS_*`` environment variables. Defaults target
a single-host setup: SQLite for the queue store and the result database, a
local Redis for the shared cache tier, and Hugging Face style inference
endpoints for the analysis providers.
"""

from __future__ import annotations

from typing import Dict

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppConfig(BaseSettings):
    """Pydantic settings container shared by the runtime and the CLI."""

    model_config = SettingsConfigDict(env_prefix="MEMOLENS_", extra="ignore")

    queue_dsn: str = Field(
        default="sqlite:///memolens-queue.db",
        description="Queue store DSN; postgresql:// for shared deployments.",
    )
    queue_statement_timeout_ms: int = Field(
        default=5_000,
        ge=1_000,
        description="PostgreSQL statement_timeout used by the queue store (ms).",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Shared (L2) cache location.",
    )
    l2_socket_timeout_seconds: float = Field(default=2.0, gt=0)
    l2_key_prefix: str = Field(default="memolens:", description="Namespace for L2 keys.")
    cache_default_ttl_seconds: int = Field(default=3_600, ge=1)
    analysis_cache_ttl_seconds: int = Field(
        default=86_400,
        ge=1,
        description="TTL for per-kind analysis results keyed by content fingerprint.",
    )
    l1_max_entries: int = Field(default=1_024, ge=1)
    l1_max_ttl_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Upper bound on how long an entry may live in the process-local tier.",
    )
    provider_base_url: str = Field(
        default="https://api-inference.huggingface.co/models",
        description="Base URL of the inference endpoints.",
    )
    provider_api_key: str | None = Field(default=None)
    provider_timeout_seconds: float = Field(default=30.0, gt=0)
    provider_models: Dict[str, str] = Field(
        default_factory=dict,
        description="Overrides of the provider name to model path mapping.",
    )
    subtask_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="How long the orchestrator waits for one analysis subtask.",
    )
    tag_timeout_seconds: float = Field(default=30.0, gt=0)
    late_result_wait_seconds: float = Field(
        default=300.0,
        gt=0,
        description="How long a timed-out subtask is still followed so its result gets cached.",
    )
    job_max_attempts: int = Field(default=3, ge=1)
    job_default_priority: int = Field(
        default=10,
        ge=1,
        description="Lower numbers are dequeued first.",
    )
    retry_base_delay_seconds: float = Field(default=1.0, ge=0.0)
    retry_max_delay_seconds: float = Field(default=60.0, ge=0.0)
    await_poll_interval_ms: int = Field(
        default=250,
        ge=10,
        description="Store polling interval used by await_completion.",
    )
    worker_poll_interval_ms: int = Field(default=500, ge=10)
    worker_concurrency: int = Field(default=2, ge=1, description="Workers per queue.")
    worker_job_timeout_seconds: float = Field(default=120.0, gt=0)
    worker_stall_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Active jobs older than this are redelivered.",
    )
    shutdown_drain: bool = Field(
        default=True,
        description="Wait for in-flight jobs on shutdown instead of cancelling them.",
    )
    shutdown_grace_seconds: float = Field(default=30.0, ge=0.0)
    result_database_url: str = Field(default="sqlite:///memolens.db")
    fallback_caption_tag_limit: int = Field(default=5, ge=0)
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=True)

    @classmethod
    def build_default(cls) -> "AppConfig":
        """Construct configuration from the environment."""

        return cls()


__all__ = ["AppConfig"]
