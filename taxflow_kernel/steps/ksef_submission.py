"""Step handlers for the ``ksef_submission`` workflow (existing invoice)."""

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


def validate_invoice(ctx: StepContext, c: StepCollaborators) -> StepOutcome:
    return validate_invoice_data(ctx, c, passed_state=WorkflowState.PROCESSING)


def prepare_submission(ctx: StepContext, c: StepCollaborators) -> StepOutcome:
    invoice_id = ctx.merged_data.get("invoiceId")
    if not invoice_id:
        return StepOutcome.fail("No invoiceId in workflow data")
    if c.invoice_lookup is None:
        return missing_collaborator("invoice lookup")
    try:
        invoice = c.invoice_lookup.get_invoice_by_id(ctx.tenant_id, invoice_id)
        ksef_dto = build_ksef_payload(invoice)
    except Exception as exc:
        return StepOutcome.fail(f"Failed to prepare submission: {error_text(exc)}")
    return StepOutcome.ok(
        {
            "invoiceId": invoice_id,
            "invoiceNumber": ksef_dto["invoiceNumber"],
            "prepared": True,
            "submission": ksef_dto,
        },
        output={"preparationResult": "success"},
    )


def submit_to_ksef(ctx: StepContext, c: StepCollaborators) -> StepOutcome:
    skipped = submission.already_submitted(ctx)
    if skipped is not None:
        return skipped
    ksef_dto = ctx.instance.data.get("submission")
    if not ksef_dto:
        return StepOutcome.fail("Submission has not been prepared")
    return submission.submit(ctx, c, ksef_dto, success_state=None)


def confirm_submission(ctx: StepContext, c: StepCollaborators) -> StepOutcome:
    reference = ctx.instance.data.get("referenceNumber")
    if not reference:
        return StepOutcome.fail("No KSeF reference number to confirm")
    return StepOutcome.ok(
        {"confirmed": True},
        target_state=WorkflowState.COMPLETED,
        output={"referenceNumber": reference},
    )


HANDLERS: dict[str, StepHandler] = {
    "validate_invoice": validate_invoice,
    "prepare_submission": prepare_submission,
    "submit_to_ksef": submit_to_ksef,
    "confirm_submission": confirm_submission,
}
