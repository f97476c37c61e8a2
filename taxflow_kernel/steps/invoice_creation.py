"""Step handlers for the ``invoice_creation`` workflow."""

from __future__ import annotations

from taxflow_kernel.domain.dtos import StepOutcome
from taxflow_kernel.domain.workflow import WorkflowState
from taxflow_kernel.steps import submission
from taxflow_kernel.steps.base import (
    StepCollaborators,
    StepContext,
    StepHandler,
    error_text,
    missing_collaborator,
)
from taxflow_kernel.steps.ksef_payload import build_ksef_payload
from taxflow_kernel.steps.validation import validate_invoice_data


def draft_invoice(ctx: StepContext, c: StepCollaborators) -> StepOutcome:
    existing = ctx.instance.data.get("invoiceId")
    if existing:
        # Re-running the step must not create a second invoice
        return StepOutcome.ok(
            ctx.input_data,
            output={"invoiceCreated": False, "invoiceId": existing},
        )
    if c.invoice_creator is None:
        return missing_collaborator("invoice creator")
    try:
        invoice = c.invoice_creator.create_invoice(ctx.tenant_id, ctx.merged_data)
    except Exception as exc:
        return StepOutcome.fail(
            f"Failed to create invoice draft: {error_text(exc)}",
            target_state=WorkflowState.FAILED,
        )
    return StepOutcome.ok(
        {**ctx.input_data, "invoiceId": invoice.id, "invoiceNumber": invoice.number},
        output={"invoiceCreated": True, "invoiceId": invoice.id},
    )


def validate_invoice(ctx: StepContext, c: StepCollaborators) -> StepOutcome:
    return validate_invoice_data(ctx, c, passed_state=WorkflowState.PENDING_APPROVAL)


def approve_invoice(ctx: StepContext, c: StepCollaborators) -> StepOutcome:
    approved_by = ctx.input_data.get("approvedBy", "system")
    return StepOutcome.ok(
        {"approved": True, "approvedBy": approved_by},
        target_state=WorkflowState.APPROVED,
        output={"approvalResult": "approved", "approvedBy": approved_by},
    )


def generate_invoice(ctx: StepContext, c: StepCollaborators) -> StepOutcome:
    # The invoice document already exists after draft_invoice
    return StepOutcome.ok({"generated": True}, output={"generationResult": "success"})


def submit_ksef(ctx: StepContext, c: StepCollaborators) -> StepOutcome:
    skipped = submission.already_submitted(ctx)
    if skipped is not None:
        return StepOutcome.ok(
            skipped.data, target_state=WorkflowState.COMPLETED, output=skipped.output,
        )

    invoice_id = ctx.instance.data.get("invoiceId")
    if not invoice_id:
        return StepOutcome.fail(
            "No invoiceId in workflow data", target_state=WorkflowState.FAILED,
        )
    if c.invoice_lookup is None:
        return missing_collaborator("invoice lookup")
    try:
        invoice = c.invoice_lookup.get_invoice_by_id(ctx.tenant_id, invoice_id)
        ksef_dto = build_ksef_payload(invoice)
    except Exception as exc:
        return StepOutcome.fail(
            f"Failed to load invoice {invoice_id}: {error_text(exc)}",
            target_state=WorkflowState.FAILED,
        )

    return submission.submit(ctx, c, ksef_dto, success_state=WorkflowState.COMPLETED)


def complete_workflow(ctx: StepContext, c: StepCollaborators) -> StepOutcome:
    return StepOutcome.ok(target_state=WorkflowState.COMPLETED)


HANDLERS: dict[str, StepHandler] = {
    "draft_invoice": draft_invoice,
    "validate_invoice": validate_invoice,
    "approve_invoice": approve_invoice,
    "generate_invoice": generate_invoice,
    "submit_ksef": submit_ksef,
    "complete_workflow": complete_workflow,
}
