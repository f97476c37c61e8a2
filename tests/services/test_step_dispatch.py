"""
Tests for taxflow_kernel.services.step_dispatch.
"""

from uuid import uuid4

import pytest

from taxflow_kernel.domain.dtos import StepOutcome, WorkflowInstance
from taxflow_kernel.domain.workflow import (
    StepSpec,
    WorkflowState,
    WorkflowTrigger,
    WorkflowType,
)
from taxflow_kernel.exceptions import UnknownStepError
from taxflow_kernel.services.step_dispatch import StepDispatcher
from taxflow_kernel.steps import default_step_table
from taxflow_kernel.steps.base import StepCollaborators, StepContext

from tests.conftest import TENANT


def _context(workflow_type, step_id, state=WorkflowState.DRAFT, data=None, input_data=None):
    instance = WorkflowInstance(
        id=uuid4(),
        tenant_id=TENANT,
        type=workflow_type,
        state=state,
        trigger=WorkflowTrigger.MANUAL,
        data=data or {},
    )
    step = StepSpec(step_id, step_id.replace("_", " ").title(), state)
    return StepContext(instance=instance, step=step, input_data=input_data or {})


class TestLookup:
    def test_default_table_covers_every_registered_step(self, registry):
        StepDispatcher().verify_against(registry)

    def test_same_step_id_resolves_per_workflow_type(self, dispatcher):
        assert dispatcher.has_handler(WorkflowType.INVOICE_CREATION, "validate_invoice")
        assert dispatcher.has_handler(WorkflowType.KSEF_SUBMISSION, "validate_invoice")
        assert not dispatcher.has_handler(WorkflowType.TAX_CALCULATION, "validate_invoice")

    def test_verify_fails_on_missing_handler(self, registry):
        table = default_step_table()
        del table[(WorkflowType.TAX_CALCULATION, "calculate_tax")]

        with pytest.raises(UnknownStepError) as exc_info:
            StepDispatcher(handlers=table).verify_against(registry)

        assert exc_info.value.workflow_type == "tax_calculation"
        assert exc_info.value.step_id == "calculate_tax"

    def test_dispatch_unknown_step(self, dispatcher, captured_logs):
        ctx = _context(WorkflowType.TAX_CALCULATION, "teleport")

        with pytest.raises(UnknownStepError):
            dispatcher.dispatch(ctx)

        assert any(
            r["message"] == "step_dispatch_unknown_step" for r in captured_logs()
        )


class TestDispatch:
    def test_returns_handler_outcome(self, dispatcher):
        ctx = _context(
            WorkflowType.TAX_CALCULATION,
            "validate_data",
            state=WorkflowState.PENDING_VALIDATION,
            input_data={"period": "2026-01"},
        )

        outcome = dispatcher.dispatch(ctx)

        assert outcome.success
        assert outcome.target_state == WorkflowState.PROCESSING
        assert outcome.data == {"period": "2026-01", "validated": True}

    def test_uses_injected_collaborators(self, dispatcher):
        ctx = _context(WorkflowType.TAX_CALCULATION, "calculate_tax", state=WorkflowState.PROCESSING)

        outcome = dispatcher.dispatch(ctx)

        assert outcome.success
        assert outcome.data["calculation"]["vatDue"] == "230.00"

    def test_missing_collaborator_fails_step(self):
        ctx = _context(WorkflowType.TAX_CALCULATION, "calculate_tax", state=WorkflowState.PROCESSING)

        outcome = StepDispatcher(StepCollaborators()).dispatch(ctx)

        assert not outcome.success
        assert "tax calculator" in outcome.error

    def test_crashing_handler_becomes_failed_outcome(self, captured_logs):
        def explode(ctx, c):
            raise KeyError("boom")

        dispatcher = StepDispatcher(
            handlers={(WorkflowType.TAX_CALCULATION, "calculate_tax"): explode},
        )
        ctx = _context(WorkflowType.TAX_CALCULATION, "calculate_tax", state=WorkflowState.PROCESSING)

        outcome = dispatcher.dispatch(ctx)

        assert outcome == StepOutcome.fail(
            "Step calculate_tax failed unexpectedly: 'boom'"
        )
        assert outcome.target_state is None
        assert any(r["message"] == "step_handler_crashed" for r in captured_logs())
