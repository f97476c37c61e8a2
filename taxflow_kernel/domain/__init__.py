"""
Pure domain layer.

Value objects, workflow definitions, the backoff calculator and the
collaborator ports.  NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O (SystemClock excepted)
"""

from taxflow_kernel.domain.backoff import BackoffPolicy, compute_backoff_ms
from taxflow_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from taxflow_kernel.domain.definitions import (
    WorkflowRegistry,
    build_default_registry,
)
from taxflow_kernel.domain.dtos import (
    KSEF_SUBMISSION_RETRY,
    RetryRequest,
    RetryStats,
    RetryTask,
    RetryTaskStatus,
    StepOutcome,
    StepResult,
    StepRuntime,
    TemplateStep,
    TemplateUsageStats,
    WorkflowInstance,
    WorkflowTemplate,
)
from taxflow_kernel.domain.workflow import (
    TERMINAL_STATES,
    StepSpec,
    StepStatus,
    Transition,
    WorkflowDefinition,
    WorkflowState,
    WorkflowTrigger,
    WorkflowType,
    is_terminal,
)

__all__ = [
    "BackoffPolicy",
    "Clock",
    "DeterministicClock",
    "KSEF_SUBMISSION_RETRY",
    "RetryRequest",
    "RetryStats",
    "RetryTask",
    "RetryTaskStatus",
    "StepOutcome",
    "StepResult",
    "StepRuntime",
    "StepSpec",
    "StepStatus",
    "SystemClock",
    "TERMINAL_STATES",
    "TemplateStep",
    "TemplateUsageStats",
    "Transition",
    "WorkflowDefinition",
    "WorkflowInstance",
    "WorkflowRegistry",
    "WorkflowState",
    "WorkflowTemplate",
    "WorkflowTrigger",
    "WorkflowType",
    "build_default_registry",
    "compute_backoff_ms",
    "is_terminal",
]
