"""
StepDispatcher -- type-directed step execution.

Responsibility:
    Resolves ``(workflow_type, step_id)`` to a handler through a lookup
    table and runs it.  Returns the handler's StepOutcome untouched.

Architecture position:
    Services layer.  Depends on taxflow_kernel.steps (handlers) and the
    definition registry; never on the session.

Invariants enforced:
    - Unknown ``(type, step_id)`` pairs fail closed with UnknownStepError,
      logged as ``step_dispatch_unknown_step`` (a configuration error,
      distinct from business failures).
    - ``verify_against(registry)`` proves every definition step has a
      handler; the engine calls it at construction.
    - A handler exception never escapes: it becomes a failed outcome
      without a target state, logged as ``step_handler_crashed``.
"""

from __future__ import annotations

import time
from collections.abc import Mapping

from taxflow_kernel.domain.definitions import WorkflowRegistry
from taxflow_kernel.domain.dtos import StepOutcome
from taxflow_kernel.domain.workflow import WorkflowType
from taxflow_kernel.exceptions import UnknownStepError
from taxflow_kernel.logging_config import get_logger
from taxflow_kernel.steps import default_step_table
from taxflow_kernel.steps.base import (
    StepCollaborators,
    StepContext,
    StepHandler,
    error_text,
)

logger = get_logger("services.step_dispatch")


class StepDispatcher:
    """Lookup table of step handlers keyed by ``(WorkflowType, step_id)``."""

    def __init__(
        self,
        collaborators: StepCollaborators | None = None,
        handlers: Mapping[tuple[WorkflowType, str], StepHandler] | None = None,
    ):
        self._collaborators = collaborators or StepCollaborators()
        self._handlers: dict[tuple[WorkflowType, str], StepHandler] = dict(
            handlers if handlers is not None else default_step_table()
        )

    @property
    def collaborators(self) -> StepCollaborators:
        return self._collaborators

    def has_handler(self, workflow_type: WorkflowType, step_id: str) -> bool:
        return (WorkflowType(workflow_type), step_id) in self._handlers

    def verify_against(self, registry: WorkflowRegistry) -> None:
        """Raise UnknownStepError for the first definition step without a handler."""
        for definition in registry:
            for step_id in definition.step_ids:
                if (definition.type, step_id) not in self._handlers:
                    logger.error(
                        "step_dispatch_unknown_step",
                        extra={
                            "workflow_type": definition.type.value,
                            "step_id": step_id,
                            "phase": "verify",
                        },
                    )
                    raise UnknownStepError(definition.type.value, step_id)

    def dispatch(self, ctx: StepContext) -> StepOutcome:
        workflow_type = ctx.instance.type
        key = (workflow_type, ctx.step.id)
        handler = self._handlers.get(key)
        if handler is None:
            logger.error(
                "step_dispatch_unknown_step",
                extra={"workflow_type": workflow_type.value, "step_id": ctx.step.id},
            )
            raise UnknownStepError(workflow_type.value, ctx.step.id)

        t0 = time.monotonic()
        try:
            outcome = handler(ctx, self._collaborators)
        except Exception as exc:
            logger.exception(
                "step_handler_crashed",
                extra={"workflow_type": workflow_type.value, "step_id": ctx.step.id},
            )
            outcome = StepOutcome.fail(
                f"Step {ctx.step.id} failed unexpectedly: {error_text(exc)}"
            )

        logger.debug(
            "step_dispatched",
            extra={
                "workflow_type": workflow_type.value,
                "step_id": ctx.step.id,
                "success": outcome.success,
                "target_state": outcome.target_state.value if outcome.target_state else None,
                "duration_ms": round((time.monotonic() - t0) * 1000, 2),
            },
        )
        return outcome
