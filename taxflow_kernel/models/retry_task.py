"""
ORM model for the durable retry queue.

Contract:
    RetryTaskModel is one row per asynchronous retry (currently KSeF
    submission retries).  Rows are never deleted; completed and failed tasks
    stay for audit.

Architecture: taxflow_kernel/models. Imports from taxflow_kernel.db.base only.

Invariants enforced:
    - ``ix_retry_tasks_drain`` on (status, next_eligible_at) serves the
      "status = pending AND next_eligible_at <= now" drain query.
    - Status changes out of ``pending`` into ``processing`` happen only via a
      conditional UPDATE in RetryQueueService.drain_eligible.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from taxflow_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from taxflow_kernel.domain.dtos import RetryTask


class RetryTaskModel(TrackedBase):
    """Persistent retry task."""

    __tablename__ = "retry_tasks"

    __table_args__ = (
        Index("ix_retry_tasks_drain", "status", "next_eligible_at"),
        Index("ix_retry_tasks_tenant_status", "tenant_id", "status"),
        Index("ix_retry_tasks_dedup", "tenant_id", "kind", "dedup_key"),
    )

    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    kind: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    next_eligible_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )
    dedup_key: Mapped[str | None] = mapped_column(String(200), nullable=True)
    workflow_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    result: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    failed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    def to_dto(self) -> RetryTask:
        from taxflow_kernel.domain.dtos import RetryTask, RetryTaskStatus

        return RetryTask(
            id=self.id,
            tenant_id=self.tenant_id,
            kind=self.kind,
            payload=dict(self.payload or {}),
            attempt=self.attempt,
            max_attempts=self.max_attempts,
            status=RetryTaskStatus(self.status),
            next_eligible_at=self.next_eligible_at,
            priority=self.priority,
            dedup_key=self.dedup_key,
            workflow_id=self.workflow_id,
            last_error=self.last_error,
            result=dict(self.result) if self.result is not None else None,
            claimed_at=self.claimed_at,
            completed_at=self.completed_at,
            failed_at=self.failed_at,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
