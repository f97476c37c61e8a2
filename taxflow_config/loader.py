"""
Configuration Loader (``taxflow_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the frozen dataclasses
of ``taxflow_config.schema``.  Runtime callers go through
``taxflow_config.get_active_config()`` instead of calling this directly.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` with a message naming the offending key.
* Unknown keys are rejected; a typo never falls back to a silent default.
* ``compute_checksum`` is deterministic for identical input.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from taxflow_config.schema import (
    BackoffConfig,
    EngineConfig,
    RetryQueueConfig,
    SubmissionConfig,
    TaxflowConfig,
)

_LOG_LEVELS = frozenset({"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file; an empty document yields ``{}``."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top-level YAML value must be a mapping")
    return data


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ValueError(f"'{key}' must be a mapping, got {type(value).__name__}")
    return value


def _check_keys(data: dict[str, Any], cls: type, where: str) -> None:
    allowed = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ValueError(f"{where}: unknown key(s): {', '.join(unknown)}")


def _positive_int(data: dict[str, Any], key: str, default: int, where: str) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{where}.{key} must be an integer, got {value!r}")
    if value < 1:
        raise ValueError(f"{where}.{key} must be >= 1, got {value}")
    return value


def _non_negative_int(data: dict[str, Any], key: str, default: int, where: str) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{where}.{key} must be an integer, got {value!r}")
    if value < 0:
        raise ValueError(f"{where}.{key} must be >= 0, got {value}")
    return value


def _positive_float(data: dict[str, Any], key: str, default: float, where: str) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{where}.{key} must be a number, got {value!r}")
    if value <= 0:
        raise ValueError(f"{where}.{key} must be > 0, got {value}")
    return float(value)


def parse_backoff(data: dict[str, Any]) -> BackoffConfig:
    where = "retry_queue.backoff"
    _check_keys(data, BackoffConfig, where)
    defaults = BackoffConfig()
    config = BackoffConfig(
        base_delay_ms=_positive_int(data, "base_delay_ms", defaults.base_delay_ms, where),
        max_delay_ms=_positive_int(data, "max_delay_ms", defaults.max_delay_ms, where),
        jitter_max_ms=_non_negative_int(data, "jitter_max_ms", defaults.jitter_max_ms, where),
    )
    if config.base_delay_ms > config.max_delay_ms:
        raise ValueError(
            f"{where}: base_delay_ms ({config.base_delay_ms}) exceeds "
            f"max_delay_ms ({config.max_delay_ms})"
        )
    return config


def parse_retry_queue(data: dict[str, Any]) -> RetryQueueConfig:
    where = "retry_queue"
    _check_keys(data, RetryQueueConfig, where)
    defaults = RetryQueueConfig()
    return RetryQueueConfig(
        max_attempts=_positive_int(data, "max_attempts", defaults.max_attempts, where),
        batch_size=_positive_int(data, "batch_size", defaults.batch_size, where),
        poll_interval_seconds=_positive_float(
            data, "poll_interval_seconds", defaults.poll_interval_seconds, where,
        ),
        default_priority=_non_negative_int(
            data, "default_priority", defaults.default_priority, where,
        ),
        stale_processing_seconds=_positive_int(
            data, "stale_processing_seconds", defaults.stale_processing_seconds, where,
        ),
        backoff=parse_backoff(_section(data, "backoff")),
    )


def parse_submission(data: dict[str, Any]) -> SubmissionConfig:
    where = "submission"
    _check_keys(data, SubmissionConfig, where)
    return SubmissionConfig(
        timeout_seconds=_positive_float(
            data, "timeout_seconds", SubmissionConfig().timeout_seconds, where,
        ),
    )


def parse_engine(data: dict[str, Any]) -> EngineConfig:
    where = "engine"
    _check_keys(data, EngineConfig, where)
    defaults = EngineConfig()
    return EngineConfig(
        concurrent_modification_retries=_non_negative_int(
            data,
            "concurrent_modification_retries",
            defaults.concurrent_modification_retries,
            where,
        ),
        default_list_limit=_positive_int(
            data, "default_list_limit", defaults.default_list_limit, where,
        ),
    )


def parse_config(data: dict[str, Any]) -> TaxflowConfig:
    """Parse a full configuration document into a TaxflowConfig."""
    allowed = {"retry_queue", "submission", "engine", "database_url", "log_level"}
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ValueError(f"unknown top-level key(s): {', '.join(unknown)}")

    log_level = str(data.get("log_level", "INFO")).upper()
    if log_level not in _LOG_LEVELS:
        raise ValueError(f"log_level must be a logging level name, got {log_level!r}")

    database_url = data.get("database_url")
    if database_url is not None and not isinstance(database_url, str):
        raise ValueError("database_url must be a string")

    return TaxflowConfig(
        retry_queue=parse_retry_queue(_section(data, "retry_queue")),
        submission=parse_submission(_section(data, "submission")),
        engine=parse_engine(_section(data, "engine")),
        database_url=database_url,
        log_level=log_level,
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
