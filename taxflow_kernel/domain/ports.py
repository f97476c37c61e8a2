"""
Collaborator ports for the workflow core.

Contract:
    Narrow capability interfaces the engine, the step handlers and the retry
    queue depend on.  Concrete invoicing, KSeF, audit and notification
    services live outside taxflow and are injected at construction.

Architecture:
    taxflow_kernel/domain.  Protocols and their value types only; ZERO I/O.

Non-goals:
    - No XML encoding: the submitter receives an opaque mapping.
    - No tax arithmetic: TaxCalculator owns it entirely.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from taxflow_kernel.domain.dtos import RetryTask


# =============================================================================
# Value types crossing the ports
# =============================================================================


@dataclass(frozen=True)
class InvoiceRef:
    """Identity of an invoice created by the invoicing collaborator."""

    id: str
    number: str


@dataclass(frozen=True)
class ValidationReport:
    valid: bool
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class SubmissionReceipt:
    """What KSeF answers for an accepted submission."""

    reference_number: str
    status: str = "submitted"
    details: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Invoicing
# =============================================================================


@runtime_checkable
class InvoiceCreator(Protocol):
    def create_invoice(self, tenant_id: str, data: dict[str, Any]) -> InvoiceRef: ...


@runtime_checkable
class InvoiceLookup(Protocol):
    def get_invoice_by_id(self, tenant_id: str, invoice_id: str) -> dict[str, Any]:
        """Return the invoice as a mapping; raise if it does not exist."""
        ...


@runtime_checkable
class InvoiceValidator(Protocol):
    def validate_invoice(self, tenant_id: str, data: dict[str, Any]) -> ValidationReport: ...


# =============================================================================
# E-invoice submission
# =============================================================================


@runtime_checkable
class InvoiceSubmitter(Protocol):
    """KSeF submission.

    Any raised exception is a submission failure.  Deduplication by invoice
    number is NOT assumed; the core tracks what it already submitted.
    """

    def submit_invoice(self, invoice_dto: dict[str, Any], tenant_id: str) -> SubmissionReceipt: ...


@runtime_checkable
class SubmissionFailureMarker(Protocol):
    """Marks the business entity permanently failed after retry exhaustion."""

    def mark_submission_failed(
        self, tenant_id: str, invoice_number: str, reason: str
    ) -> None: ...


@runtime_checkable
class FailureNotifier(Protocol):
    """Raises a terminal alert for an exhausted retry task."""

    def notify_terminal_failure(self, task: RetryTask, reason: str) -> None: ...


# =============================================================================
# Other domain collaborators
# =============================================================================


@runtime_checkable
class TaxCalculator(Protocol):
    def calculate(self, tenant_id: str, data: dict[str, Any]) -> dict[str, Any]: ...


@runtime_checkable
class CustomerRegistry(Protocol):
    def register_customer(self, tenant_id: str, data: dict[str, Any]) -> str:
        """Create the customer profile and return its id."""
        ...


@runtime_checkable
class AccessResolver(Protocol):
    """Tenancy cross-reference checks."""

    def tenant_exists(self, tenant_id: str) -> bool: ...

    def company_belongs_to(self, tenant_id: str, company_id: str) -> bool: ...

    def customer_belongs_to(self, tenant_id: str, customer_id: str) -> bool: ...


@runtime_checkable
class AuditSink(Protocol):
    """Fire-and-forget audit log.  Callers swallow and log its failures."""

    def record(
        self,
        tenant_id: str,
        action: str,
        entity_id: str,
        details: dict[str, Any],
    ) -> None: ...
