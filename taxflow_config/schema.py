"""
Runtime configuration schema.

Frozen dataclasses produced by ``taxflow_config.loader`` from YAML.  Every
field has a default so an empty YAML document yields a usable
configuration.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Retry queue
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BackoffConfig:
    """Exponential backoff with additive jitter, in milliseconds."""

    base_delay_ms: int = 5000
    max_delay_ms: int = 300000
    jitter_max_ms: int = 1000


@dataclass(frozen=True)
class RetryQueueConfig:
    max_attempts: int = 5
    batch_size: int = 10
    poll_interval_seconds: float = 30.0
    default_priority: int = 1
    stale_processing_seconds: int = 300
    backoff: BackoffConfig = field(default_factory=BackoffConfig)


# ---------------------------------------------------------------------------
# Collaborators and engine
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SubmissionConfig:
    timeout_seconds: float = 30.0  # per KSeF call


@dataclass(frozen=True)
class EngineConfig:
    concurrent_modification_retries: int = 1
    default_list_limit: int = 50


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TaxflowConfig:
    """Root configuration object returned by ``get_active_config()``."""

    retry_queue: RetryQueueConfig = field(default_factory=RetryQueueConfig)
    submission: SubmissionConfig = field(default_factory=SubmissionConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    database_url: str | None = None
    log_level: str = "INFO"
    checksum: str = ""
