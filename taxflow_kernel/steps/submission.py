"""
Shared KSeF submission step logic.

Used by ``invoice_creation.submit_ksef`` and ``ksef_submission.submit_to_ksef``.
A failed or timed-out submission fails the step, moves the instance to
``failed`` and asks the engine to enqueue a ``ksef_submission_retry`` task
keyed by invoice number.
"""

from __future__ import annotations

from typing import Any

from taxflow_kernel.domain.dtos import KSEF_SUBMISSION_RETRY, RetryRequest, StepOutcome
from taxflow_kernel.domain.workflow import WorkflowState
from taxflow_kernel.steps.base import (
    StepCollaborators,
    StepContext,
    error_text,
    missing_collaborator,
)
from taxflow_kernel.utils.timeouts import call_with_timeout


def already_submitted(ctx: StepContext) -> StepOutcome | None:
    """Short-circuit when a reference number is already recorded."""
    reference = ctx.instance.data.get("referenceNumber")
    if not reference:
        return None
    return StepOutcome.ok(
        {"submitted": True},
        output={"submissionResult": "skipped", "referenceNumber": reference},
    )


def retry_payload(ctx: StepContext, ksef_dto: dict[str, Any]) -> dict[str, Any]:
    return {
        "invoice": ksef_dto,
        "invoiceNumber": ksef_dto.get("invoiceNumber"),
        "invoiceId": ctx.instance.data.get("invoiceId"),
        "workflowId": str(ctx.instance.id),
    }


def submit(
    ctx: StepContext,
    collaborators: StepCollaborators,
    ksef_dto: dict[str, Any],
    *,
    success_state: WorkflowState | None,
) -> StepOutcome:
    submitter = collaborators.invoice_submitter
    if submitter is None:
        return missing_collaborator("invoice submitter")

    try:
        receipt = call_with_timeout(
            submitter.submit_invoice,
            collaborators.submission_timeout_seconds,
            ksef_dto,
            ctx.tenant_id,
        )
    except Exception as exc:
        invoice_number = ksef_dto.get("invoiceNumber")
        return StepOutcome.fail(
            f"KSeF submission failed: {error_text(exc)}",
            data={"submitted": False},
            target_state=WorkflowState.FAILED,
            output={"submissionResult": "failed", "errorType": type(exc).__name__},
            retry=RetryRequest(
                kind=KSEF_SUBMISSION_RETRY,
                payload=retry_payload(ctx, ksef_dto),
                dedup_key=str(invoice_number) if invoice_number else None,
            ),
        )

    return StepOutcome.ok(
        {
            "submitted": True,
            "referenceNumber": receipt.reference_number,
            "ksefStatus": receipt.status,
        },
        target_state=success_state,
        output={
            "submissionResult": "success",
            "referenceNumber": receipt.reference_number,
        },
    )
