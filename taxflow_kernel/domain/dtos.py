"""
taxflow_kernel.domain.dtos -- Pure frozen dataclasses for workflows and retries.

ZERO I/O.  ORM models convert to and from these via ``to_dto()`` /
``from_dto()``; services return them so callers never hold live ORM rows.

Invariants enforced:
    - All DTOs are frozen dataclasses (immutable); collections are tuples or
      fresh dicts owned by the DTO.
    - RetryTask.attempt < max_attempts while status is PENDING.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from taxflow_kernel.domain.workflow import (
    StepStatus,
    WorkflowState,
    WorkflowTrigger,
    WorkflowType,
)


# =============================================================================
# Workflow instances
# =============================================================================


@dataclass(frozen=True)
class StepRuntime:
    """Per-step execution record stored on the workflow instance."""

    id: str
    name: str
    status: StepStatus = StepStatus.PENDING
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None
    output: dict[str, Any] | None = None

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "error_message": self.error_message,
            "output": self.output,
        }

    @classmethod
    def from_json(cls, raw: dict[str, Any]) -> StepRuntime:
        return cls(
            id=raw["id"],
            name=raw.get("name", raw["id"]),
            status=StepStatus(raw.get("status", StepStatus.PENDING.value)),
            started_at=_parse_ts(raw.get("started_at")),
            completed_at=_parse_ts(raw.get("completed_at")),
            error_message=raw.get("error_message"),
            output=raw.get("output"),
        )


@dataclass(frozen=True)
class WorkflowInstance:
    """Immutable snapshot of a persisted workflow instance."""

    id: UUID
    tenant_id: str
    type: WorkflowType
    state: WorkflowState
    trigger: WorkflowTrigger
    data: dict[str, Any] = field(default_factory=dict)
    steps: tuple[StepRuntime, ...] = ()
    company_id: str | None = None
    customer_id: str | None = None
    template_id: UUID | None = None
    version: int = 1
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def get_step(self, step_id: str) -> StepRuntime | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None


@dataclass(frozen=True)
class StepResult:
    """What ``execute_step`` returns to the caller."""

    workflow_id: UUID
    step_id: str
    success: bool
    state: WorkflowState
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    retry_task_id: UUID | None = None


# =============================================================================
# Step dispatch effects
# =============================================================================


@dataclass(frozen=True)
class RetryRequest:
    """Asks the engine to enqueue a retry task alongside the step effect."""

    kind: str
    payload: dict[str, Any]
    dedup_key: str | None = None
    priority: int | None = None


@dataclass(frozen=True)
class StepOutcome:
    """Effect description returned by a step handler.

    Handlers never write persistence; the engine applies the outcome.
    """

    success: bool
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    target_state: WorkflowState | None = None
    output: dict[str, Any] | None = None
    retry: RetryRequest | None = None

    @classmethod
    def ok(
        cls,
        data: dict[str, Any] | None = None,
        *,
        target_state: WorkflowState | None = None,
        output: dict[str, Any] | None = None,
    ) -> StepOutcome:
        return cls(True, dict(data or {}), None, target_state, output)

    @classmethod
    def fail(
        cls,
        error: str,
        *,
        data: dict[str, Any] | None = None,
        target_state: WorkflowState | None = None,
        output: dict[str, Any] | None = None,
        retry: RetryRequest | None = None,
    ) -> StepOutcome:
        return cls(False, dict(data or {}), error, target_state, output, retry)


# =============================================================================
# Retry queue
# =============================================================================


class RetryTaskStatus(str, Enum):
    """Retry task lifecycle status."""

    PENDING = "pending"  # Waiting for next_eligible_at
    PROCESSING = "processing"  # Claimed by a drain
    COMPLETED = "completed"  # External call succeeded
    FAILED = "failed"  # Attempts exhausted; only manual retry revives it


OPEN_TASK_STATUSES: frozenset[RetryTaskStatus] = frozenset({
    RetryTaskStatus.PENDING,
    RetryTaskStatus.PROCESSING,
})

KSEF_SUBMISSION_RETRY = "ksef_submission_retry"


@dataclass(frozen=True)
class RetryTask:
    """Immutable snapshot of a durable retry task."""

    id: UUID
    tenant_id: str
    kind: str
    payload: dict[str, Any]
    attempt: int
    max_attempts: int
    status: RetryTaskStatus
    next_eligible_at: datetime
    priority: int = 1
    dedup_key: str | None = None
    workflow_id: UUID | None = None
    last_error: str | None = None
    result: dict[str, Any] | None = None
    claimed_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class RetryStats:
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.processing + self.completed + self.failed


# =============================================================================
# Templates
# =============================================================================


@dataclass(frozen=True)
class TemplateStep:
    id: str
    name: str
    state: str | None = None
    description: str | None = None

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "state": self.state,
            "description": self.description,
        }

    @classmethod
    def from_json(cls, raw: dict[str, Any]) -> TemplateStep:
        return cls(
            id=raw.get("id", ""),
            name=raw.get("name", ""),
            state=raw.get("state"),
            description=raw.get("description"),
        )


@dataclass(frozen=True)
class WorkflowTemplate:
    """Immutable snapshot of a reusable workflow template."""

    id: UUID
    tenant_id: str
    name: str
    type: WorkflowType
    steps: tuple[TemplateStep, ...]
    default_settings: dict[str, Any] = field(default_factory=dict)
    description: str | None = None
    version: int = 1
    is_active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class DefaultTemplate:
    """System-provided template; not stored, not tenant-scoped."""

    key: str
    name: str
    type: WorkflowType
    steps: tuple[TemplateStep, ...]
    default_settings: dict[str, Any] = field(default_factory=dict)
    description: str | None = None
    version: str = "1.0"


@dataclass(frozen=True)
class TemplateUsageStats:
    template_id: UUID
    template_name: str
    total_workflows: int
    workflows_by_state: dict[str, int]
    last_used: datetime | None = None


def _parse_ts(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)
