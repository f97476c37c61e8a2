"""Built-in step handlers, one module per workflow type."""

from taxflow_kernel.domain.workflow import WorkflowType
from taxflow_kernel.steps import (
    customer_onboarding,
    invoice_creation,
    ksef_submission,
    tax_calculation,
)
from taxflow_kernel.steps.base import StepCollaborators, StepContext, StepHandler

_MODULE_HANDLERS = {
    WorkflowType.INVOICE_CREATION: invoice_creation.HANDLERS,
    WorkflowType.TAX_CALCULATION: tax_calculation.HANDLERS,
    WorkflowType.KSEF_SUBMISSION: ksef_submission.HANDLERS,
    WorkflowType.CUSTOMER_ONBOARDING: customer_onboarding.HANDLERS,
}


def default_step_table() -> dict[tuple[WorkflowType, str], StepHandler]:
    """Fresh ``{(type, step_id): handler}`` table for the built-in workflows."""
    return {
        (workflow_type, step_id): handler
        for workflow_type, handlers in _MODULE_HANDLERS.items()
        for step_id, handler in handlers.items()
    }


__all__ = [
    "StepCollaborators",
    "StepContext",
    "StepHandler",
    "default_step_table",
]
