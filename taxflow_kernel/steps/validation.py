"""Invoice validation step shared by invoice_creation and ksef_submission."""

from __future__ import annotations

from taxflow_kernel.domain.dtos import StepOutcome
from taxflow_kernel.domain.workflow import WorkflowState
from taxflow_kernel.steps.base import (
    StepCollaborators,
    StepContext,
    error_text,
    missing_collaborator,
)


def validate_invoice_data(
    ctx: StepContext,
    collaborators: StepCollaborators,
    *,
    passed_state: WorkflowState,
) -> StepOutcome:
    validator = collaborators.invoice_validator
    if validator is None:
        return missing_collaborator("invoice validator")

    try:
        report = validator.validate_invoice(ctx.tenant_id, ctx.merged_data)
    except Exception as exc:
        return StepOutcome.fail(
            f"Validation error: {error_text(exc)}",
            target_state=WorkflowState.VALIDATION_FAILED,
        )

    if not report.valid:
        return StepOutcome.fail(
            f"Validation failed: {', '.join(report.errors)}",
            data={"validated": False, **ctx.input_data},
            target_state=WorkflowState.VALIDATION_FAILED,
            output={"validationResult": "failed", "errors": list(report.errors)},
        )

    return StepOutcome.ok(
        {**ctx.input_data, "validated": True},
        target_state=passed_state,
        output={"validationResult": "passed", "warnings": list(report.warnings)},
    )
