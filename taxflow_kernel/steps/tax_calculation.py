"""Step handlers for the ``tax_calculation`` workflow.

The arithmetic lives in the TaxCalculator collaborator.
"""

from __future__ import annotations

from taxflow_kernel.domain.dtos import StepOutcome
from taxflow_kernel.domain.workflow import WorkflowState
from taxflow_kernel.steps.base import (
    StepCollaborators,
    StepContext,
    StepHandler,
    error_text,
    missing_collaborator,
)

REQUIRED_FIELDS = ("period",)


def prepare_calculation(ctx: StepContext, c: StepCollaborators) -> StepOutcome:
    return StepOutcome.ok(ctx.input_data, output=dict(ctx.input_data))


def validate_data(ctx: StepContext, c: StepCollaborators) -> StepOutcome:
    merged = ctx.merged_data
    errors = [f"{name} is required" for name in REQUIRED_FIELDS if not merged.get(name)]
    if errors:
        return StepOutcome.fail(
            f"Validation failed: {', '.join(errors)}",
            data={"validated": False},
            target_state=WorkflowState.VALIDATION_FAILED,
            output={"validationResult": "failed", "errors": errors},
        )
    return StepOutcome.ok(
        {**ctx.input_data, "validated": True},
        target_state=WorkflowState.PROCESSING,
        output={"validationResult": "passed"},
    )


def calculate_tax(ctx: StepContext, c: StepCollaborators) -> StepOutcome:
    if c.tax_calculator is None:
        return missing_collaborator("tax calculator")
    try:
        result = c.tax_calculator.calculate(ctx.tenant_id, ctx.merged_data)
    except Exception as exc:
        return StepOutcome.fail(
            f"Tax calculation failed: {error_text(exc)}",
            target_state=WorkflowState.FAILED,
        )
    return StepOutcome.ok(
        {"calculated": True, "calculation": result},
        output={"calculationResult": "success"},
    )


def finalize_calculation(ctx: StepContext, c: StepCollaborators) -> StepOutcome:
    if not ctx.instance.data.get("calculated"):
        return StepOutcome.fail("Tax calculation has not been performed")
    return StepOutcome.ok({"finalized": True}, target_state=WorkflowState.COMPLETED)


HANDLERS: dict[str, StepHandler] = {
    "prepare_calculation": prepare_calculation,
    "validate_data": validate_data,
    "calculate_tax": calculate_tax,
    "finalize_calculation": finalize_calculation,
}
