"""Step handlers for the ``customer_onboarding`` workflow."""

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
from taxflow_kernel.steps.nip import is_valid_nip, normalize_nip

DEFAULT_VAT_RATE = 23


def collect_customer_data(ctx: StepContext, c: StepCollaborators) -> StepOutcome:
    return StepOutcome.ok(ctx.input_data, output=dict(ctx.input_data))


def validate_customer_data(ctx: StepContext, c: StepCollaborators) -> StepOutcome:
    merged = ctx.merged_data
    errors: list[str] = []
    if not str(merged.get("name") or "").strip():
        errors.append("name is required")
    nip = merged.get("nip")
    if nip and not is_valid_nip(str(nip)):
        errors.append(f"invalid NIP: {nip}")

    if errors:
        return StepOutcome.fail(
            f"Validation failed: {', '.join(errors)}",
            data={"validated": False},
            target_state=WorkflowState.VALIDATION_FAILED,
            output={"validationResult": "failed", "errors": errors},
        )

    data = {**ctx.input_data, "validated": True}
    if nip:
        data["nip"] = normalize_nip(str(nip))
    return StepOutcome.ok(
        data,
        target_state=WorkflowState.PENDING_APPROVAL,
        output={"validationResult": "passed"},
    )


def approve_customer(ctx: StepContext, c: StepCollaborators) -> StepOutcome:
    approved_by = ctx.input_data.get("approvedBy", "system")
    return StepOutcome.ok(
        {"approved": True, "approvedBy": approved_by},
        target_state=WorkflowState.APPROVED,
        output={"approvalResult": "approved", "approvedBy": approved_by},
    )


def setup_customer_profile(ctx: StepContext, c: StepCollaborators) -> StepOutcome:
    existing = ctx.instance.data.get("customerId")
    if existing:
        return StepOutcome.ok(
            {"profileCreated": True},
            output={"profileResult": "existing", "customerId": existing},
        )
    if c.customer_registry is None:
        return missing_collaborator("customer registry")
    try:
        customer_id = c.customer_registry.register_customer(ctx.tenant_id, ctx.merged_data)
    except Exception as exc:
        return StepOutcome.fail(f"Failed to create customer profile: {error_text(exc)}")
    return StepOutcome.ok(
        {"profileCreated": True, "customerId": customer_id},
        output={"profileResult": "success", "customerId": customer_id},
    )


def configure_tax_settings(ctx: StepContext, c: StepCollaborators) -> StepOutcome:
    merged = ctx.merged_data
    settings = {
        "vatPayer": bool(merged.get("vatPayer", True)),
        "splitPayment": bool(merged.get("splitPayment", False)),
        "defaultVatRate": merged.get("defaultVatRate", DEFAULT_VAT_RATE),
    }
    return StepOutcome.ok(
        {"settingsConfigured": True, "taxSettings": settings},
        output={"settingsResult": "success"},
    )


def finalize_onboarding(ctx: StepContext, c: StepCollaborators) -> StepOutcome:
    if not ctx.instance.data.get("profileCreated"):
        return StepOutcome.fail("Customer profile has not been created")
    return StepOutcome.ok({"onboarded": True}, target_state=WorkflowState.COMPLETED)


HANDLERS: dict[str, StepHandler] = {
    "collect_customer_data": collect_customer_data,
    "validate_customer_data": validate_customer_data,
    "approve_customer": approve_customer,
    "setup_customer_profile": setup_customer_profile,
    "configure_tax_settings": configure_tax_settings,
    "finalize_onboarding": finalize_onboarding,
}
