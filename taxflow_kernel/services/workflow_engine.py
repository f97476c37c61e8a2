"""
WorkflowEngine -- lifecycle of workflow instances.

Responsibility:
    Creates instances, executes steps through the StepDispatcher, applies
    the returned effects (data merge, step record, state transition),
    cancels, and answers read queries.  Submission failures reported by a
    step are handed to the RetryQueueService in the same transaction.

Architecture position:
    Services layer.  Owns WorkflowInstanceModel writes.  Flushes only; the
    caller commits.

Invariants enforced:
    - Every state change is checked against the definition's transition
      table; an illegal change raises InvalidTransitionError and nothing
      is mutated.
    - Terminal states absorb: no step runs and no transition leaves them.
    - Every write goes through ``_mutate``: a SAVEPOINT plus the optimistic
      version column.  A lost race is retried after a fresh reload, then
      surfaces as OptimisticLockError.
    - Data merges are shallow; keys returned by a step overwrite.
    - Audit failures are logged and never fail the operation.

Failure modes:
    - WorkflowNotFoundError for unknown ids or cross-tenant access.
    - UnsupportedWorkflowTypeError for types without a definition.
    - AccessDeniedError when the tenant, company or customer check fails.
    - StepNotFoundError / UnknownStepError before any mutation.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from taxflow_kernel.domain.clock import Clock
from taxflow_kernel.domain.definitions import WorkflowRegistry
from taxflow_kernel.domain.dtos import (
    StepResult,
    StepRuntime,
    WorkflowInstance,
)
from taxflow_kernel.domain.ports import AccessResolver, AuditSink
from taxflow_kernel.domain.workflow import (
    StepSpec,
    StepStatus,
    Transition,
    WorkflowDefinition,
    WorkflowState,
    WorkflowTrigger,
    WorkflowType,
    is_terminal,
)
from taxflow_kernel.exceptions import (
    AccessDeniedError,
    InvalidOperationError,
    InvalidTransitionError,
    OptimisticLockError,
    StepNotFoundError,
    TemplateNotFoundError,
    TemplateValidationError,
    UnknownStepError,
    WorkflowNotFoundError,
)
from taxflow_kernel.logging_config import LogContext, get_logger
from taxflow_kernel.models.workflow import WorkflowInstanceModel, WorkflowTemplateModel
from taxflow_kernel.selectors.workflow_selector import WorkflowSelector
from taxflow_kernel.services.audit import LoggingAuditSink
from taxflow_kernel.services.base import BaseService
from taxflow_kernel.services.retry_queue import RetryQueueService
from taxflow_kernel.services.step_dispatch import StepDispatcher
from taxflow_kernel.steps.base import StepContext

logger = get_logger("services.workflow_engine")

T = TypeVar("T")

# (state before, transition taken)
_Applied = tuple[WorkflowState, Transition]


class WorkflowEngine(BaseService[WorkflowInstanceModel]):
    """Creates, advances and cancels workflow instances."""

    def __init__(
        self,
        session: Session,
        registry: WorkflowRegistry,
        dispatcher: StepDispatcher,
        clock: Clock,
        *,
        access: AccessResolver,
        retry_queue: RetryQueueService | None = None,
        audit: AuditSink | None = None,
        concurrent_modification_retries: int = 1,
        default_list_limit: int = 50,
    ):
        super().__init__(session)
        dispatcher.verify_against(registry)
        self._registry = registry
        self._dispatcher = dispatcher
        self._clock = clock
        self._access = access
        self._retry_queue = retry_queue or RetryQueueService(session, clock)
        self._audit = audit or LoggingAuditSink()
        self._retries = max(0, concurrent_modification_retries)
        self._default_list_limit = default_list_limit
        self._selector = WorkflowSelector(session)

    # =========================================================================
    # Create
    # =========================================================================

    def create_workflow(
        self,
        tenant_id: str,
        workflow_type: WorkflowType | str,
        trigger: WorkflowTrigger | str = WorkflowTrigger.MANUAL,
        initial_data: dict[str, Any] | None = None,
        company_id: str | None = None,
        customer_id: str | None = None,
        template_id: UUID | None = None,
    ) -> WorkflowInstance:
        """Persist a new instance in the definition's initial state."""
        definition = self._registry.get(workflow_type)
        trigger = WorkflowTrigger(trigger)

        if not self._access.tenant_exists(tenant_id):
            raise AccessDeniedError(tenant_id, "tenant", tenant_id)
        if company_id is not None and not self._access.company_belongs_to(tenant_id, company_id):
            raise AccessDeniedError(tenant_id, "company", company_id)
        if customer_id is not None and not self._access.customer_belongs_to(tenant_id, customer_id):
            raise AccessDeniedError(tenant_id, "customer", customer_id)

        data: dict[str, Any] = {}
        if template_id is not None:
            template = self._load_template(tenant_id, template_id, definition)
            data.update(template.default_settings or {})
        data.update(initial_data or {})

        now = self._clock.now()
        model = WorkflowInstanceModel(
            tenant_id=tenant_id,
            type=definition.type.value,
            state=definition.initial_state.value,
            trigger=trigger.value,
            data=data,
            steps=[StepRuntime(id=s.id, name=s.name).to_json() for s in definition.steps],
            company_id=company_id,
            customer_id=customer_id,
            template_id=template_id,
            created_at=now,
            updated_at=now,
        )
        self.session.add(model)
        self.session.flush()

        logger.info(
            "workflow_created",
            extra={
                "workflow_id": str(model.id),
                "tenant_id": tenant_id,
                "workflow_type": definition.type.value,
                "state": model.state,
                "trigger": trigger.value,
                "template_id": str(template_id) if template_id else None,
            },
        )
        self._record_audit(
            tenant_id,
            "workflow_created",
            str(model.id),
            {"type": definition.type.value, "trigger": trigger.value},
        )
        return model.to_dto()

    def _load_template(
        self, tenant_id: str, template_id: UUID, definition: WorkflowDefinition
    ) -> WorkflowTemplateModel:
        template = self.session.execute(
            select(WorkflowTemplateModel).where(
                WorkflowTemplateModel.id == template_id,
                WorkflowTemplateModel.tenant_id == tenant_id,
                WorkflowTemplateModel.is_active.is_(True),
            )
        ).scalar_one_or_none()
        if template is None:
            raise TemplateNotFoundError(str(template_id))
        if template.type != definition.type.value:
            raise TemplateValidationError([
                f"template type {template.type} does not match workflow type "
                f"{definition.type.value}",
            ])
        return template

    # =========================================================================
    # Execute step
    # =========================================================================

    def execute_step(
        self,
        workflow_id: UUID | str,
        step_id: str,
        input_data: dict[str, Any] | None = None,
        *,
        tenant_id: str | None = None,
    ) -> StepResult:
        """Run one step and apply its outcome.

        Business failures come back as ``StepResult(success=False)``;
        exceptions are reserved for lookups, illegal transitions and
        concurrency conflicts.
        """
        model = self._load(workflow_id, tenant_id)
        definition = self._registry.get(model.type)
        step = definition.get_step(step_id)
        if step is None:
            raise StepNotFoundError(definition.type.value, step_id)

        with LogContext.bind(tenant_id=model.tenant_id, workflow_id=str(model.id)):
            return self._execute_step(model, definition, step, dict(input_data or {}))

    def _execute_step(
        self,
        model: WorkflowInstanceModel,
        definition: WorkflowDefinition,
        step: StepSpec,
        input_data: dict[str, Any],
    ) -> StepResult:
        workflow_id = model.id
        current = WorkflowState(model.state)
        if is_terminal(current):
            raise InvalidOperationError(str(workflow_id), f"execute_step:{step.id}", current.value)
        if not self._dispatcher.has_handler(definition.type, step.id):
            logger.error(
                "step_dispatch_unknown_step",
                extra={"workflow_type": definition.type.value, "step_id": step.id},
            )
            raise UnknownStepError(definition.type.value, step.id)

        self._step_entry(workflow_id, definition, step, current)

        def start(m: WorkflowInstanceModel) -> list[_Applied]:
            # State may have moved since the first load; re-check against the row.
            state = WorkflowState(m.state)
            if is_terminal(state):
                raise InvalidOperationError(str(m.id), f"execute_step:{step.id}", state.value)
            entry = self._step_entry(m.id, definition, step, state)
            applied = []
            if entry is not None:
                applied.append(self._apply_transition(m, definition, entry.to_state))
            self._update_step(
                m,
                step,
                status=StepStatus.RUNNING,
                started_at=self._clock.now(),
                completed_at=None,
                error_message=None,
            )
            m.updated_at = self._clock.now()
            return applied

        model, entered = self._mutate(workflow_id, None, start)
        self._after_transitions(model, entered)

        outcome = self._dispatcher.dispatch(StepContext(model.to_dto(), step, input_data))

        def apply(m: WorkflowInstanceModel):
            success = outcome.success
            error = outcome.error
            rejected: InvalidTransitionError | None = None
            applied: list[_Applied] = []

            target = outcome.target_state
            if target is not None and WorkflowState(m.state) != target:
                try:
                    applied.append(self._apply_transition(m, definition, target))
                except InvalidTransitionError as exc:
                    rejected = exc
                    success = False
                    error = f"{error}; {exc}" if error else str(exc)

            if rejected is None and outcome.data:
                m.data = {**(m.data or {}), **outcome.data}

            now = self._clock.now()
            self._update_step(
                m,
                step,
                status=StepStatus.COMPLETED if success else StepStatus.FAILED,
                completed_at=now,
                error_message=None if success else error,
                output=outcome.output,
            )
            m.updated_at = now
            return applied, rejected, success, error

        model, (applied, rejected, success, error) = self._mutate(workflow_id, None, apply)
        self._after_transitions(model, applied)

        retry_task_id = None
        if outcome.retry is not None and rejected is None:
            task = self._retry_queue.enqueue(
                model.tenant_id,
                outcome.retry.kind,
                outcome.retry.payload,
                priority=outcome.retry.priority,
                dedup_key=outcome.retry.dedup_key,
                workflow_id=workflow_id,
            )
            retry_task_id = task.id

        log = logger.info if success else logger.warning
        log(
            "step_executed",
            extra={
                "step_id": step.id,
                "success": success,
                "state": model.state,
                "error": error,
                "retry_task_id": str(retry_task_id) if retry_task_id else None,
            },
        )
        self._record_audit(
            model.tenant_id,
            "step_executed",
            str(workflow_id),
            {"step_id": step.id, "success": success, "state": model.state, "error": error},
        )

        if rejected is not None:
            raise rejected

        return StepResult(
            workflow_id=workflow_id,
            step_id=step.id,
            success=success,
            state=WorkflowState(model.state),
            data=dict(model.data or {}),
            error=error,
            retry_task_id=retry_task_id,
        )

    def _step_entry(
        self,
        workflow_id: UUID,
        definition: WorkflowDefinition,
        step: StepSpec,
        state: WorkflowState,
    ) -> Transition | None:
        """Transition that moves ``state`` into the step's state, if one is needed."""
        if is_terminal(step.belongs_to_state) or step.belongs_to_state == state:
            return None
        entry = definition.step_entry_transition(state, step.belongs_to_state)
        if entry is None:
            logger.warning(
                "step_out_of_order",
                extra={
                    "step_id": step.id,
                    "state": state.value,
                    "step_state": step.belongs_to_state.value,
                },
            )
            raise InvalidTransitionError(
                str(workflow_id), state.value, step.belongs_to_state.value,
            )
        return entry

    # =========================================================================
    # Transition / cancel
    # =========================================================================

    def transition(
        self,
        workflow_id: UUID | str,
        new_state: WorkflowState | str,
        merge_data: dict[str, Any] | None = None,
        *,
        tenant_id: str | None = None,
    ) -> WorkflowInstance:
        """Move to ``new_state`` if the definition allows it."""
        try:
            target = WorkflowState(new_state)
        except ValueError:
            model = self._load(workflow_id, tenant_id)
            raise InvalidTransitionError(str(model.id), model.state, str(new_state)) from None

        def op(m: WorkflowInstanceModel) -> list[_Applied]:
            definition = self._registry.get(m.type)
            applied = [self._apply_transition(m, definition, target)]
            if merge_data:
                m.data = {**(m.data or {}), **merge_data}
            return applied

        model, applied = self._mutate(workflow_id, tenant_id, op)
        self._after_transitions(model, applied)
        return model.to_dto()

    def cancel_workflow(self, tenant_id: str, workflow_id: UUID | str) -> WorkflowInstance:
        def op(m: WorkflowInstanceModel) -> list[_Applied]:
            state = WorkflowState(m.state)
            if is_terminal(state):
                raise InvalidOperationError(str(m.id), "cancel", state.value)
            definition = self._registry.get(m.type)
            return [self._apply_transition(m, definition, WorkflowState.CANCELLED)]

        model, applied = self._mutate(workflow_id, tenant_id, op)
        logger.info(
            "workflow_cancelled",
            extra={"workflow_id": str(model.id), "tenant_id": tenant_id},
        )
        self._after_transitions(model, applied)
        return model.to_dto()

    # =========================================================================
    # Queries
    # =========================================================================

    def get_workflow(self, tenant_id: str, workflow_id: UUID | str) -> WorkflowInstance:
        key = _as_uuid(workflow_id)
        found = self._selector.get(key, tenant_id) if key is not None else None
        if found is None:
            raise WorkflowNotFoundError(str(workflow_id))
        return found

    def list_workflows(
        self,
        tenant_id: str,
        *,
        workflow_type: WorkflowType | str | None = None,
        state: WorkflowState | str | None = None,
        company_id: str | None = None,
        customer_id: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[WorkflowInstance]:
        return self._selector.list(
            tenant_id,
            workflow_type=workflow_type,
            state=state,
            company_id=company_id,
            customer_id=customer_id,
            limit=self._default_list_limit if limit is None else limit,
            offset=offset,
        )

    def get_definition(self, workflow_type: WorkflowType | str) -> WorkflowDefinition:
        return self._registry.get(workflow_type)

    def available_workflow_types(self) -> list[WorkflowType]:
        return self._registry.types()

    # =========================================================================
    # Internals
    # =========================================================================

    def _load(
        self,
        workflow_id: UUID | str,
        tenant_id: str | None = None,
        *,
        refresh: bool = False,
    ) -> WorkflowInstanceModel:
        key = _as_uuid(workflow_id)
        if key is None:
            raise WorkflowNotFoundError(str(workflow_id))
        stmt = select(WorkflowInstanceModel).where(WorkflowInstanceModel.id == key)
        if tenant_id is not None:
            stmt = stmt.where(WorkflowInstanceModel.tenant_id == tenant_id)
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        model = self.session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise WorkflowNotFoundError(str(workflow_id))
        return model

    def _mutate(
        self,
        workflow_id: UUID | str,
        tenant_id: str | None,
        mutation: Callable[[WorkflowInstanceModel], T],
    ) -> tuple[WorkflowInstanceModel, T]:
        """Apply ``mutation`` under a SAVEPOINT, retrying stale writes."""
        for attempt in range(self._retries + 1):
            model = self._load(workflow_id, tenant_id, refresh=attempt > 0)
            try:
                with self.session.begin_nested():
                    result = mutation(model)
                    self.session.flush()
            except StaleDataError:
                logger.warning(
                    "workflow_concurrent_modification",
                    extra={"workflow_id": str(workflow_id), "attempt": attempt + 1},
                )
                continue
            return model, result

        logger.error(
            "workflow_optimistic_lock_exhausted",
            extra={"workflow_id": str(workflow_id), "attempts": self._retries + 1},
        )
        raise OptimisticLockError("WorkflowInstance", str(workflow_id))

    def _apply_transition(
        self,
        model: WorkflowInstanceModel,
        definition: WorkflowDefinition,
        target: WorkflowState,
    ) -> _Applied:
        current = WorkflowState(model.state)
        transition = definition.find_transition(current, target)
        if transition is None:
            logger.warning(
                "workflow_transition_rejected",
                extra={
                    "workflow_id": str(model.id),
                    "from_state": current.value,
                    "to_state": target.value,
                },
            )
            raise InvalidTransitionError(str(model.id), current.value, target.value)
        model.state = target.value
        model.updated_at = self._clock.now()
        return current, transition

    def _after_transitions(
        self, model: WorkflowInstanceModel, applied: list[_Applied]
    ) -> None:
        for from_state, transition in applied:
            logger.info(
                "workflow_transitioned",
                extra={
                    "workflow_id": str(model.id),
                    "from_state": from_state.value,
                    "to_state": transition.to_state.value,
                    "action": transition.action,
                },
            )
            self._record_audit(
                model.tenant_id,
                "workflow_transitioned",
                str(model.id),
                {
                    "from": from_state.value,
                    "to": transition.to_state.value,
                    "action": transition.action,
                },
            )

    def _update_step(
        self,
        model: WorkflowInstanceModel,
        step: StepSpec,
        **changes: Any,
    ) -> None:
        steps = [dict(s) for s in (model.steps or [])]
        for raw in steps:
            if raw.get("id") == step.id:
                break
        else:
            raw = StepRuntime(id=step.id, name=step.name).to_json()
            steps.append(raw)

        for key, value in changes.items():
            if key == "status":
                value = StepStatus(value).value
            elif key in ("started_at", "completed_at") and value is not None:
                value = value.isoformat()
            raw[key] = value
        model.steps = steps

    def _record_audit(
        self, tenant_id: str, action: str, entity_id: str, details: dict[str, Any]
    ) -> None:
        try:
            self._audit.record(tenant_id, action, entity_id, details)
        except Exception:
            logger.exception(
                "audit_record_failed",
                extra={"audit_action": action, "entity_id": entity_id},
            )


def _as_uuid(value: UUID | str) -> UUID | None:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None
