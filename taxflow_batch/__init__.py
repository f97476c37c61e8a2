"""
taxflow_batch -- background drain of the durable retry queue.

Provides the RetryWorker (in-process polling loop with graceful shutdown)
and the handler registry that maps task kinds to the operation being
retried.  Nothing in taxflow_kernel imports from taxflow_batch.
"""

from taxflow_batch.handlers import (
    KsefSubmissionRetryHandler,
    RetryHandler,
    RetryHandlerRegistry,
    default_handler_registry,
)
from taxflow_batch.worker import RetryTickResult, RetryWorker

__all__ = [
    "KsefSubmissionRetryHandler",
    "RetryHandler",
    "RetryHandlerRegistry",
    "RetryTickResult",
    "RetryWorker",
    "default_handler_registry",
]
