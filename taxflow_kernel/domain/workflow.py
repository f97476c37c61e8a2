"""
Workflow state machine value objects (``taxflow_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects describing a workflow type: its states, legal
transitions and ordered steps.  Instances of these are compiled into the
definition registry once at process start and never mutated.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* ``initial_state`` is a member of ``states``.
* Transitions reference only states in ``states``.
* Every step belongs to a state in ``states``; step ids are unique.
* No transition leaves a terminal state.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from taxflow_kernel.exceptions import InvalidWorkflowDefinitionError


class WorkflowType(str, Enum):
    INVOICE_CREATION = "invoice_creation"
    TAX_CALCULATION = "tax_calculation"
    KSEF_SUBMISSION = "ksef_submission"
    CUSTOMER_ONBOARDING = "customer_onboarding"


class WorkflowState(str, Enum):
    DRAFT = "draft"
    PENDING_VALIDATION = "pending_validation"
    VALIDATION_FAILED = "validation_failed"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES: frozenset[WorkflowState] = frozenset({
    WorkflowState.COMPLETED,
    WorkflowState.FAILED,
    WorkflowState.CANCELLED,
})


def is_terminal(state: WorkflowState | str) -> bool:
    return WorkflowState(state) in TERMINAL_STATES


class WorkflowTrigger(str, Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"
    EVENT_BASED = "event_based"
    API_CALL = "api_call"


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class Transition:
    """A legal state transition.

    ``step_entry=True`` lets the engine take this transition implicitly when
    a step belonging to ``to_state`` is executed while the instance sits in
    ``from_state``.
    """
    from_state: WorkflowState
    to_state: WorkflowState
    action: str
    step_entry: bool = False


@dataclass(frozen=True)
class StepSpec:
    """A named step and the state it belongs to."""
    id: str
    name: str
    belongs_to_state: WorkflowState
    description: str = ""


@dataclass(frozen=True)
class WorkflowDefinition:
    """A state machine definition for one workflow type.

    Contract: frozen; call ``validate()`` (the registry does) before use.
    """
    type: WorkflowType
    name: str
    description: str
    initial_state: WorkflowState
    states: frozenset[WorkflowState]
    transitions: tuple[Transition, ...]
    steps: tuple[StepSpec, ...]

    def validate(self) -> WorkflowDefinition:
        wf = self.type.value
        if self.initial_state not in self.states:
            raise InvalidWorkflowDefinitionError(
                wf, f"initial state {self.initial_state.value} is not a declared state"
            )
        for t in self.transitions:
            for state in (t.from_state, t.to_state):
                if state not in self.states:
                    raise InvalidWorkflowDefinitionError(
                        wf, f"transition {t.action} references unknown state {state.value}"
                    )
            if t.from_state in TERMINAL_STATES:
                raise InvalidWorkflowDefinitionError(
                    wf, f"transition {t.action} leaves terminal state {t.from_state.value}"
                )
        seen: set[str] = set()
        for step in self.steps:
            if step.belongs_to_state not in self.states:
                raise InvalidWorkflowDefinitionError(
                    wf, f"step {step.id} belongs to unknown state {step.belongs_to_state.value}"
                )
            if step.id in seen:
                raise InvalidWorkflowDefinitionError(wf, f"duplicate step id {step.id}")
            seen.add(step.id)
        return self

    # -- queries ---------------------------------------------------------

    @property
    def step_ids(self) -> tuple[str, ...]:
        return tuple(s.id for s in self.steps)

    def get_step(self, step_id: str) -> StepSpec | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def find_transition(
        self, from_state: WorkflowState, to_state: WorkflowState
    ) -> Transition | None:
        for t in self.transitions:
            if t.from_state == from_state and t.to_state == to_state:
                return t
        return None

    def can_transition(self, from_state: WorkflowState, to_state: WorkflowState) -> bool:
        return self.find_transition(from_state, to_state) is not None

    def step_entry_transition(
        self, from_state: WorkflowState, to_state: WorkflowState
    ) -> Transition | None:
        t = self.find_transition(from_state, to_state)
        if t is not None and t.step_entry:
            return t
        return None
