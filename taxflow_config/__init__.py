"""
taxflow_config -- single public entrypoint for runtime configuration.

Responsibility:
    ``get_active_config()`` is the only way services, the retry worker and
    scripts obtain configuration.  It reads one YAML file (the bundled
    ``sets/default.yaml`` unless a path is given), validates it, and
    returns a frozen ``TaxflowConfig``.

Architecture position:
    Configuration.  Sits beside ``taxflow_kernel``; the kernel never
    imports from ``taxflow_config``.  ``taxflow_services`` translates the
    returned dataclasses into constructor arguments.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``ValueError`` -- schema or value validation failures.
"""

from __future__ import annotations

from pathlib import Path

from taxflow_config.loader import compute_checksum, load_yaml_file, parse_config
from taxflow_config.schema import (
    BackoffConfig,
    EngineConfig,
    RetryQueueConfig,
    SubmissionConfig,
    TaxflowConfig,
)
from taxflow_kernel.logging_config import get_logger

_logger = get_logger("config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(config_path: Path | str | None = None) -> TaxflowConfig:
    """Load, validate and return the active configuration.

    Emits a ``taxflow_config_loaded`` log entry carrying the source path
    and the checksum of the parsed document.
    """
    path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    config = parse_config(load_yaml_file(path))

    _logger.info(
        "taxflow_config_loaded",
        extra={
            "config_path": str(path),
            "checksum": config.checksum,
            "max_attempts": config.retry_queue.max_attempts,
            "poll_interval_seconds": config.retry_queue.poll_interval_seconds,
        },
    )
    return config


__all__ = [
    "BackoffConfig",
    "DEFAULT_CONFIG_PATH",
    "EngineConfig",
    "RetryQueueConfig",
    "SubmissionConfig",
    "TaxflowConfig",
    "compute_checksum",
    "get_active_config",
]
