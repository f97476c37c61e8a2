"""
Workflow definition registry (``taxflow_kernel.domain.definitions``).

Responsibility
--------------
Compiles the four built-in workflow definitions and exposes them through
an immutable ``WorkflowRegistry``.  The registry is built once by
``build_default_registry()`` and injected into the engine and dispatcher.

Architecture position
---------------------
**Kernel domain layer** -- constant data.  ZERO I/O.

Invariants enforced
-------------------
* Every definition passes ``WorkflowDefinition.validate()`` at build time.
* The registry mapping is read-only after construction.
* Every non-terminal state of every definition has a ``cancel`` transition.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from types import MappingProxyType

from taxflow_kernel.domain.workflow import (
    TERMINAL_STATES,
    StepSpec,
    Transition,
    WorkflowDefinition,
    WorkflowState,
    WorkflowType,
)
from taxflow_kernel.exceptions import UnsupportedWorkflowTypeError

S = WorkflowState


def _cancel_from(states: Iterable[WorkflowState]) -> tuple[Transition, ...]:
    return tuple(
        Transition(s, S.CANCELLED, "cancel")
        for s in states
        if s not in TERMINAL_STATES
    )


# ---------------------------------------------------------------------------
# invoice_creation
# ---------------------------------------------------------------------------

_INVOICE_STATES = frozenset({
    S.DRAFT, S.PENDING_VALIDATION, S.VALIDATION_FAILED, S.PENDING_APPROVAL,
    S.APPROVED, S.PROCESSING, S.COMPLETED, S.FAILED, S.CANCELLED,
})

INVOICE_CREATION = WorkflowDefinition(
    type=WorkflowType.INVOICE_CREATION,
    name="Invoice Creation",
    description="Draft, validate, approve and submit an invoice to KSeF",
    initial_state=S.DRAFT,
    states=_INVOICE_STATES,
    transitions=(
        Transition(S.DRAFT, S.PENDING_VALIDATION, "validate", step_entry=True),
        Transition(S.DRAFT, S.FAILED, "fail"),
        Transition(S.PENDING_VALIDATION, S.VALIDATION_FAILED, "validation_failed"),
        Transition(S.PENDING_VALIDATION, S.PENDING_APPROVAL, "validation_passed"),
        Transition(S.VALIDATION_FAILED, S.DRAFT, "revise"),
        Transition(S.PENDING_APPROVAL, S.APPROVED, "approve"),
        Transition(S.PENDING_APPROVAL, S.DRAFT, "reject"),
        Transition(S.APPROVED, S.PROCESSING, "process", step_entry=True),
        Transition(S.PROCESSING, S.COMPLETED, "complete"),
        Transition(S.PROCESSING, S.FAILED, "fail"),
    ) + _cancel_from(sorted(_INVOICE_STATES)),
    steps=(
        StepSpec("draft_invoice", "Draft Invoice", S.DRAFT,
                 "Create initial invoice draft"),
        StepSpec("validate_invoice", "Validate Invoice", S.PENDING_VALIDATION,
                 "Validate invoice data and tax compliance"),
        StepSpec("approve_invoice", "Approve Invoice", S.PENDING_APPROVAL,
                 "Get approval for invoice creation"),
        StepSpec("generate_invoice", "Generate Invoice", S.APPROVED,
                 "Generate final invoice document"),
        StepSpec("submit_ksef", "Submit to KSeF", S.PROCESSING,
                 "Submit invoice to KSeF system"),
        StepSpec("complete_workflow", "Complete Workflow", S.COMPLETED,
                 "Mark workflow as completed"),
    ),
)

# ---------------------------------------------------------------------------
# tax_calculation
# ---------------------------------------------------------------------------

_TAX_STATES = frozenset({
    S.DRAFT, S.PENDING_VALIDATION, S.VALIDATION_FAILED, S.PROCESSING,
    S.COMPLETED, S.FAILED, S.CANCELLED,
})

TAX_CALCULATION = WorkflowDefinition(
    type=WorkflowType.TAX_CALCULATION,
    name="Tax Calculation",
    description="Prepare, validate and compute a tax calculation for a period",
    initial_state=S.DRAFT,
    states=_TAX_STATES,
    transitions=(
        Transition(S.DRAFT, S.PENDING_VALIDATION, "validate", step_entry=True),
        Transition(S.PENDING_VALIDATION, S.VALIDATION_FAILED, "validation_failed"),
        Transition(S.PENDING_VALIDATION, S.PROCESSING, "validation_passed"),
        Transition(S.VALIDATION_FAILED, S.DRAFT, "revise"),
        Transition(S.PROCESSING, S.COMPLETED, "complete"),
        Transition(S.PROCESSING, S.FAILED, "fail"),
    ) + _cancel_from(sorted(_TAX_STATES)),
    steps=(
        StepSpec("prepare_calculation", "Prepare Calculation", S.DRAFT,
                 "Prepare tax calculation data"),
        StepSpec("validate_data", "Validate Data", S.PENDING_VALIDATION,
                 "Validate input data for tax calculation"),
        StepSpec("calculate_tax", "Calculate Tax", S.PROCESSING,
                 "Perform tax calculations"),
        StepSpec("finalize_calculation", "Finalize Calculation", S.COMPLETED,
                 "Finalize and store tax calculation results"),
    ),
)

# ---------------------------------------------------------------------------
# ksef_submission
# ---------------------------------------------------------------------------

_KSEF_STATES = frozenset({
    S.PENDING_VALIDATION, S.VALIDATION_FAILED, S.PROCESSING,
    S.COMPLETED, S.FAILED, S.CANCELLED,
})

KSEF_SUBMISSION = WorkflowDefinition(
    type=WorkflowType.KSEF_SUBMISSION,
    name="KSeF Submission",
    description="Validate and submit an existing invoice to KSeF",
    initial_state=S.PENDING_VALIDATION,
    states=_KSEF_STATES,
    transitions=(
        Transition(S.PENDING_VALIDATION, S.VALIDATION_FAILED, "validation_failed"),
        Transition(S.PENDING_VALIDATION, S.PROCESSING, "validation_passed"),
        Transition(S.VALIDATION_FAILED, S.PENDING_VALIDATION, "revise"),
        Transition(S.PROCESSING, S.COMPLETED, "complete"),
        Transition(S.PROCESSING, S.FAILED, "fail"),
    ) + _cancel_from(sorted(_KSEF_STATES)),
    steps=(
        StepSpec("validate_invoice", "Validate Invoice", S.PENDING_VALIDATION,
                 "Validate invoice for KSeF compliance"),
        StepSpec("prepare_submission", "Prepare Submission", S.PROCESSING,
                 "Prepare invoice data for KSeF submission"),
        StepSpec("submit_to_ksef", "Submit to KSeF", S.PROCESSING,
                 "Submit invoice to KSeF system"),
        StepSpec("confirm_submission", "Confirm Submission", S.COMPLETED,
                 "Confirm successful KSeF submission"),
    ),
)

# ---------------------------------------------------------------------------
# customer_onboarding
# ---------------------------------------------------------------------------

_ONBOARDING_STATES = _INVOICE_STATES

CUSTOMER_ONBOARDING = WorkflowDefinition(
    type=WorkflowType.CUSTOMER_ONBOARDING,
    name="Customer Onboarding",
    description="Collect, validate and register a new customer",
    initial_state=S.DRAFT,
    states=_ONBOARDING_STATES,
    transitions=(
        Transition(S.DRAFT, S.PENDING_VALIDATION, "validate", step_entry=True),
        Transition(S.PENDING_VALIDATION, S.VALIDATION_FAILED, "validation_failed"),
        Transition(S.PENDING_VALIDATION, S.PENDING_APPROVAL, "validation_passed"),
        Transition(S.VALIDATION_FAILED, S.DRAFT, "revise"),
        Transition(S.PENDING_APPROVAL, S.APPROVED, "approve"),
        Transition(S.PENDING_APPROVAL, S.DRAFT, "reject"),
        Transition(S.APPROVED, S.PROCESSING, "process", step_entry=True),
        Transition(S.PROCESSING, S.COMPLETED, "complete"),
        Transition(S.PROCESSING, S.FAILED, "fail"),
    ) + _cancel_from(sorted(_ONBOARDING_STATES)),
    steps=(
        StepSpec("collect_customer_data", "Collect Customer Data", S.DRAFT,
                 "Collect initial customer information"),
        StepSpec("validate_customer_data", "Validate Customer Data",
                 S.PENDING_VALIDATION, "Validate customer data for compliance"),
        StepSpec("approve_customer", "Approve Customer", S.PENDING_APPROVAL,
                 "Get approval for customer onboarding"),
        StepSpec("setup_customer_profile", "Setup Customer Profile", S.APPROVED,
                 "Create customer profile and settings"),
        StepSpec("configure_tax_settings", "Configure Tax Settings", S.PROCESSING,
                 "Configure tax-related settings for customer"),
        StepSpec("finalize_onboarding", "Finalize Onboarding", S.COMPLETED,
                 "Complete customer onboarding process"),
    ),
)

BUILTIN_DEFINITIONS: tuple[WorkflowDefinition, ...] = (
    INVOICE_CREATION,
    TAX_CALCULATION,
    KSEF_SUBMISSION,
    CUSTOMER_ONBOARDING,
)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class WorkflowRegistry:
    """Read-only catalogue of workflow definitions keyed by type."""

    def __init__(self, definitions: Iterable[WorkflowDefinition]):
        table: dict[WorkflowType, WorkflowDefinition] = {}
        for definition in definitions:
            definition.validate()
            table[definition.type] = definition
        self._definitions = MappingProxyType(table)

    def get(self, workflow_type: WorkflowType | str) -> WorkflowDefinition:
        """Return the definition for a type.

        Raises:
            UnsupportedWorkflowTypeError: unknown or unregistered type.
        """
        try:
            key = WorkflowType(workflow_type)
        except ValueError:
            raise UnsupportedWorkflowTypeError(str(workflow_type)) from None
        definition = self._definitions.get(key)
        if definition is None:
            raise UnsupportedWorkflowTypeError(key.value)
        return definition

    def types(self) -> list[WorkflowType]:
        return list(self._definitions)

    def __contains__(self, workflow_type: object) -> bool:
        try:
            return WorkflowType(workflow_type) in self._definitions
        except ValueError:
            return False

    def __iter__(self) -> Iterator[WorkflowDefinition]:
        return iter(self._definitions.values())

    def __len__(self) -> int:
        return len(self._definitions)


def build_default_registry() -> WorkflowRegistry:
    return WorkflowRegistry(BUILTIN_DEFINITIONS)
