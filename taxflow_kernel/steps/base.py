"""
Step handler contract.

Contract:
    A step handler is a plain function ``(StepContext, StepCollaborators) ->
    StepOutcome``.  It reads the instance snapshot and the caller's input,
    may call collaborators, and returns an effect description.  It never
    touches the session.

    Handlers translate collaborator errors into ``StepOutcome.fail(...)``.
    Anything that still escapes is caught by the dispatcher.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from taxflow_kernel.domain.dtos import WorkflowInstance, StepOutcome
from taxflow_kernel.domain.ports import (
    CustomerRegistry,
    InvoiceCreator,
    InvoiceLookup,
    InvoiceSubmitter,
    InvoiceValidator,
    TaxCalculator,
)
from taxflow_kernel.domain.workflow import StepSpec

DEFAULT_SUBMISSION_TIMEOUT_SECONDS = 30.0


@dataclass(frozen=True)
class StepContext:
    """Everything a handler may read."""

    instance: WorkflowInstance
    step: StepSpec
    input_data: dict[str, Any] = field(default_factory=dict)

    @property
    def tenant_id(self) -> str:
        return self.instance.tenant_id

    @property
    def merged_data(self) -> dict[str, Any]:
        """Instance data with this call's input laid over it."""
        return {**self.instance.data, **self.input_data}


@dataclass(frozen=True)
class StepCollaborators:
    """Ports available to step handlers.

    Collaborators a deployment does not provide stay None; a handler that
    needs a missing one fails its step with a clear error.
    """

    invoice_creator: InvoiceCreator | None = None
    invoice_lookup: InvoiceLookup | None = None
    invoice_validator: InvoiceValidator | None = None
    invoice_submitter: InvoiceSubmitter | None = None
    tax_calculator: TaxCalculator | None = None
    customer_registry: CustomerRegistry | None = None
    submission_timeout_seconds: float = DEFAULT_SUBMISSION_TIMEOUT_SECONDS


StepHandler = Callable[[StepContext, StepCollaborators], StepOutcome]


def missing_collaborator(name: str) -> StepOutcome:
    return StepOutcome.fail(f"No {name} collaborator configured")


def error_text(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__
