"""
RetryHandler protocol, RetryHandlerRegistry and the KSeF resubmission handler.

Contract:
    A ``RetryHandler`` performs the external call for one task ``kind``.
    It returns the result dict stored on the completed task, or raises;
    any exception is a failed try and the worker reschedules the task.

Architecture:
    taxflow_batch.  Handlers never touch the session; the worker owns the
    task lifecycle.

Invariants enforced:
    - One handler per ``kind`` string.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from taxflow_kernel.domain.dtos import KSEF_SUBMISSION_RETRY, RetryTask
from taxflow_kernel.domain.ports import InvoiceSubmitter
from taxflow_kernel.logging_config import get_logger
from taxflow_kernel.steps.base import DEFAULT_SUBMISSION_TIMEOUT_SECONDS
from taxflow_kernel.utils.timeouts import call_with_timeout

logger = get_logger("batch.handlers")


@runtime_checkable
class RetryHandler(Protocol):
    """Performs the retried operation for a single task kind."""

    @property
    def kind(self) -> str: ...

    def handle(self, task: RetryTask) -> dict[str, Any]: ...


class RetryHandlerRegistry:
    """Registry mapping task kinds to RetryHandler implementations.

    Contract:
        - ``register()`` adds a handler; raises ValueError on duplicate.
        - ``get()`` retrieves by kind; raises KeyError if missing.
    """

    def __init__(self, handlers: list[RetryHandler] | None = None) -> None:
        self._handlers: dict[str, RetryHandler] = {}
        for handler in handlers or []:
            self.register(handler)

    def register(self, handler: RetryHandler) -> None:
        if handler.kind in self._handlers:
            raise ValueError(f"Retry handler for kind '{handler.kind}' is already registered")
        self._handlers[handler.kind] = handler

    def get(self, kind: str) -> RetryHandler:
        try:
            return self._handlers[kind]
        except KeyError:
            raise KeyError(
                f"No retry handler registered for kind '{kind}'. "
                f"Available: {sorted(self._handlers)}"
            ) from None

    def list_kinds(self) -> tuple[str, ...]:
        return tuple(sorted(self._handlers))

    def __len__(self) -> int:
        return len(self._handlers)

    def __contains__(self, kind: str) -> bool:
        return kind in self._handlers


class KsefSubmissionRetryHandler:
    """Resubmits the stored KSeF invoice payload under a hard deadline."""

    def __init__(
        self,
        submitter: InvoiceSubmitter,
        timeout_seconds: float | None = DEFAULT_SUBMISSION_TIMEOUT_SECONDS,
    ):
        self._submitter = submitter
        self._timeout_seconds = timeout_seconds

    @property
    def kind(self) -> str:
        return KSEF_SUBMISSION_RETRY

    def handle(self, task: RetryTask) -> dict[str, Any]:
        invoice = task.payload.get("invoice")
        if not invoice:
            raise ValueError(f"Retry task {task.id} payload has no invoice")

        receipt = call_with_timeout(
            self._submitter.submit_invoice,
            self._timeout_seconds,
            invoice,
            task.tenant_id,
        )
        logger.info(
            "ksef_resubmission_succeeded",
            extra={
                "task_id": str(task.id),
                "invoice_number": task.payload.get("invoiceNumber"),
                "reference_number": receipt.reference_number,
            },
        )
        return {"referenceNumber": receipt.reference_number, "status": receipt.status}


def default_handler_registry(
    submitter: InvoiceSubmitter,
    timeout_seconds: float | None = DEFAULT_SUBMISSION_TIMEOUT_SECONDS,
) -> RetryHandlerRegistry:
    """Registry with the built-in ``ksef_submission_retry`` handler."""
    return RetryHandlerRegistry([KsefSubmissionRetryHandler(submitter, timeout_seconds)])
