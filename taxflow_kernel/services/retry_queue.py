"""
RetryQueueService -- durable at-least-once retry queue.

Responsibility:
    Owns the RetryTask lifecycle: enqueue, claim (drain), complete,
    reschedule with exponential backoff, exhaustion, and manual retry.

Architecture position:
    Kernel > Services -- imperative shell.  Called by the workflow engine
    (enqueue on a failed submission), by the RetryWorker (drain, complete,
    reschedule) and by operational tooling (manual retry, stats).

Invariants enforced:
    - attempt < max_attempts while status is PENDING.
    - Once attempt reaches max_attempts after a failed try, status is FAILED
      and only ``manual_retry`` revives the task.
    - ``drain_eligible`` claims each task with a conditional
      ``UPDATE ... WHERE status = 'pending'``; a task whose UPDATE matched
      no row was claimed by a concurrent drain and is skipped.
    - Tasks are never deleted.

Failure modes:
    - RetryTaskNotFoundError: unknown task id or dedup key.
    - RetryNotAllowedError: operation not legal in the task's status.
    - Failure-marker / notifier errors after exhaustion are logged and
      appended to ``last_error``; they never undo the FAILED status.

Usage:
    queue = RetryQueueService(session, clock)
    task = queue.enqueue(tenant_id, KSEF_SUBMISSION_RETRY, payload,
                         dedup_key=invoice_number)
    for task in queue.drain_eligible(batch_size=10):
        try:
            result = handler.handle(task)
        except Exception as exc:
            queue.reschedule(task.id, error=str(exc))
        else:
            queue.complete(task.id, result=result)
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from taxflow_kernel.domain.backoff import BackoffPolicy
from taxflow_kernel.domain.clock import Clock
from taxflow_kernel.domain.dtos import (
    OPEN_TASK_STATUSES,
    RetryStats,
    RetryTask,
    RetryTaskStatus,
)
from taxflow_kernel.domain.ports import FailureNotifier, SubmissionFailureMarker
from taxflow_kernel.exceptions import RetryNotAllowedError, RetryTaskNotFoundError
from taxflow_kernel.logging_config import get_logger
from taxflow_kernel.models.retry_task import RetryTaskModel
from taxflow_kernel.services.base import BaseService

logger = get_logger("services.retry_queue")

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BATCH_SIZE = 10
DEFAULT_PRIORITY = 1
DEFAULT_STALE_PROCESSING_SECONDS = 300

_DEDUP_STATUSES = tuple(s.value for s in OPEN_TASK_STATUSES) + (
    RetryTaskStatus.COMPLETED.value,
)


class RetryQueueService(BaseService[RetryTaskModel]):
    """Durable retry queue over the ``retry_tasks`` table.

    Non-goals:
        - Does NOT perform the external call (the worker's handlers do).
        - Does NOT call ``session.commit()``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock,
        *,
        backoff: BackoffPolicy | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        batch_size: int = DEFAULT_BATCH_SIZE,
        default_priority: int = DEFAULT_PRIORITY,
        stale_processing_seconds: int = DEFAULT_STALE_PROCESSING_SECONDS,
        failure_marker: SubmissionFailureMarker | None = None,
        notifier: FailureNotifier | None = None,
    ):
        super().__init__(session)
        self._clock = clock
        self._backoff = backoff or BackoffPolicy()
        self._max_attempts = max_attempts
        self._batch_size = batch_size
        self._default_priority = default_priority
        self._stale_processing_seconds = stale_processing_seconds
        self._failure_marker = failure_marker
        self._notifier = notifier

    # =========================================================================
    # Enqueue
    # =========================================================================

    def enqueue(
        self,
        tenant_id: str,
        kind: str,
        payload: dict[str, Any],
        max_attempts: int | None = None,
        *,
        priority: int | None = None,
        dedup_key: str | None = None,
        workflow_id: UUID | None = None,
    ) -> RetryTask:
        """Create a PENDING task with attempt=0, eligible now.

        With a ``dedup_key``, an existing pending, processing or completed
        task for the same tenant/kind/key is returned instead.
        """
        max_attempts = self._max_attempts if max_attempts is None else max_attempts
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

        if dedup_key is not None:
            existing = self.session.execute(
                select(RetryTaskModel)
                .where(
                    RetryTaskModel.tenant_id == tenant_id,
                    RetryTaskModel.kind == kind,
                    RetryTaskModel.dedup_key == dedup_key,
                    RetryTaskModel.status.in_(_DEDUP_STATUSES),
                )
                .order_by(RetryTaskModel.created_at.desc())
                .limit(1)
            ).scalar_one_or_none()
            if existing is not None:
                logger.info(
                    "retry_task_deduplicated",
                    extra={
                        "task_id": str(existing.id),
                        "kind": kind,
                        "dedup_key": dedup_key,
                        "status": existing.status,
                    },
                )
                return existing.to_dto()

        now = self._clock.now()
        model = RetryTaskModel(
            tenant_id=tenant_id,
            kind=kind,
            payload=dict(payload),
            attempt=0,
            max_attempts=max_attempts,
            status=RetryTaskStatus.PENDING.value,
            priority=self._default_priority if priority is None else priority,
            next_eligible_at=now,
            dedup_key=dedup_key,
            workflow_id=workflow_id,
            created_at=now,
            updated_at=now,
        )
        self.session.add(model)
        self.session.flush()

        logger.info(
            "retry_task_enqueued",
            extra={
                "task_id": str(model.id),
                "tenant_id": tenant_id,
                "kind": kind,
                "max_attempts": max_attempts,
                "dedup_key": dedup_key,
                "workflow_id": str(workflow_id) if workflow_id else None,
            },
        )
        return model.to_dto()

    # =========================================================================
    # Drain / claim
    # =========================================================================

    def drain_eligible(
        self, batch_size: int | None = None, *, kind: str | None = None
    ) -> list[RetryTask]:
        """Claim up to ``batch_size`` eligible tasks and mark them PROCESSING.

        Order is priority (desc) then age; best effort, not strict FIFO.
        """
        limit = self._batch_size if batch_size is None else batch_size
        if limit <= 0:
            return []
        now = self._clock.now()

        stmt = (
            select(RetryTaskModel.id)
            .where(
                RetryTaskModel.status == RetryTaskStatus.PENDING.value,
                RetryTaskModel.next_eligible_at <= now,
            )
            .order_by(
                RetryTaskModel.priority.desc(),
                RetryTaskModel.created_at.asc(),
                RetryTaskModel.id,
            )
            .limit(limit)
        )
        if kind is not None:
            stmt = stmt.where(RetryTaskModel.kind == kind)
        candidate_ids = list(self.session.execute(stmt).scalars())

        claimed: list[UUID] = []
        for task_id in candidate_ids:
            result = self.session.execute(
                update(RetryTaskModel)
                .where(
                    RetryTaskModel.id == task_id,
                    RetryTaskModel.status == RetryTaskStatus.PENDING.value,
                )
                .values(
                    status=RetryTaskStatus.PROCESSING.value,
                    claimed_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                claimed.append(task_id)
            else:
                logger.debug("retry_task_claim_lost", extra={"task_id": str(task_id)})

        if not claimed:
            return []

        models = self.session.execute(
            select(RetryTaskModel)
            .where(RetryTaskModel.id.in_(claimed))
            .order_by(
                RetryTaskModel.priority.desc(),
                RetryTaskModel.created_at.asc(),
                RetryTaskModel.id,
            )
            .execution_options(populate_existing=True)
        ).scalars().all()

        logger.info(
            "retry_tasks_claimed",
            extra={
                "claimed": len(claimed),
                "candidates": len(candidate_ids),
                "kind": kind,
            },
        )
        return [m.to_dto() for m in models]

    # =========================================================================
    # Outcomes
    # =========================================================================

    def complete(self, task_id: UUID, result: dict[str, Any] | None = None) -> RetryTask:
        """PROCESSING -> COMPLETED."""
        model = self._require(task_id, RetryTaskStatus.PROCESSING, "complete")
        now = self._clock.now()
        model.status = RetryTaskStatus.COMPLETED.value
        model.result = dict(result) if result is not None else None
        model.completed_at = now
        model.updated_at = now
        self.session.flush()

        logger.info(
            "retry_task_completed",
            extra={
                "task_id": str(task_id),
                "kind": model.kind,
                "attempt": model.attempt,
            },
        )
        return model.to_dto()

    def reschedule(self, task_id: UUID, error: str | None = None) -> RetryTask:
        """Record a failed try.

        PROCESSING -> PENDING with ``next_eligible_at = now + backoff(attempt)``,
        or PROCESSING -> FAILED once ``attempt`` reaches ``max_attempts``.
        """
        model = self._require(task_id, RetryTaskStatus.PROCESSING, "reschedule")
        now = self._clock.now()
        model.attempt += 1
        model.last_error = error
        model.updated_at = now
        model.claimed_at = None

        if model.attempt >= model.max_attempts:
            model.status = RetryTaskStatus.FAILED.value
            model.failed_at = now
            self.session.flush()
            logger.error(
                "retry_task_exhausted",
                extra={
                    "task_id": str(task_id),
                    "tenant_id": model.tenant_id,
                    "kind": model.kind,
                    "attempt": model.attempt,
                    "max_attempts": model.max_attempts,
                    "last_error": error,
                },
            )
            self._on_exhausted(model, error or "retry attempts exhausted")
            return model.to_dto()

        delay = self._backoff.delay(model.attempt)
        model.status = RetryTaskStatus.PENDING.value
        model.next_eligible_at = now + delay
        self.session.flush()

        logger.warning(
            "retry_task_rescheduled",
            extra={
                "task_id": str(task_id),
                "kind": model.kind,
                "attempt": model.attempt,
                "max_attempts": model.max_attempts,
                "delay_ms": int(delay.total_seconds() * 1000),
                "error": error,
            },
        )
        return model.to_dto()

    def _on_exhausted(self, model: RetryTaskModel, reason: str) -> None:
        problems: list[str] = []
        invoice_number = (model.payload or {}).get("invoiceNumber") or model.dedup_key

        if self._failure_marker is not None and invoice_number:
            try:
                self._failure_marker.mark_submission_failed(
                    model.tenant_id, str(invoice_number), reason,
                )
            except Exception as exc:
                logger.exception(
                    "retry_failure_marker_failed",
                    extra={"task_id": str(model.id), "invoice_number": invoice_number},
                )
                problems.append(f"failure marker: {exc}")

        if self._notifier is not None:
            try:
                self._notifier.notify_terminal_failure(model.to_dto(), reason)
            except Exception as exc:
                logger.exception(
                    "retry_failure_notify_failed",
                    extra={"task_id": str(model.id)},
                )
                problems.append(f"notifier: {exc}")

        if problems:
            model.last_error = "; ".join(filter(None, [model.last_error, *problems]))
            self.session.flush()

    # =========================================================================
    # Manual retry
    # =========================================================================

    def manual_retry(self, task_id: UUID) -> RetryTask:
        """FAILED -> PENDING with attempt reset to 0, eligible now."""
        model = self._require(task_id, RetryTaskStatus.FAILED, "manual_retry")
        now = self._clock.now()
        previous_attempts = model.attempt
        model.attempt = 0
        model.status = RetryTaskStatus.PENDING.value
        model.next_eligible_at = now
        model.failed_at = None
        model.claimed_at = None
        model.updated_at = now
        self.session.flush()

        logger.info(
            "retry_task_manual_retry",
            extra={
                "task_id": str(task_id),
                "kind": model.kind,
                "previous_attempts": previous_attempts,
            },
        )
        return model.to_dto()

    def manual_retry_by_key(self, tenant_id: str, kind: str, dedup_key: str) -> RetryTask:
        """Manual retry of the most recent FAILED task for a business key."""
        model = self.session.execute(
            select(RetryTaskModel)
            .where(
                RetryTaskModel.tenant_id == tenant_id,
                RetryTaskModel.kind == kind,
                RetryTaskModel.dedup_key == dedup_key,
                RetryTaskModel.status == RetryTaskStatus.FAILED.value,
            )
            .order_by(RetryTaskModel.created_at.desc())
            .limit(1)
        ).scalar_one_or_none()
        if model is None:
            raise RetryTaskNotFoundError(f"{kind}:{dedup_key}")
        return self.manual_retry(model.id)

    # =========================================================================
    # Maintenance
    # =========================================================================

    def release_stale(self, older_than_seconds: int | None = None) -> int:
        """Return PROCESSING tasks claimed before the cutoff to PENDING.

        Covers workers that died between claim and outcome.  ``attempt`` is
        not incremented.
        """
        seconds = (
            self._stale_processing_seconds
            if older_than_seconds is None
            else older_than_seconds
        )
        now = self._clock.now()
        cutoff = now - timedelta(seconds=seconds)
        result = self.session.execute(
            update(RetryTaskModel)
            .where(
                RetryTaskModel.status == RetryTaskStatus.PROCESSING.value,
                RetryTaskModel.claimed_at < cutoff,
            )
            .values(
                status=RetryTaskStatus.PENDING.value,
                claimed_at=None,
                next_eligible_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session="fetch")
        )
        released = result.rowcount or 0
        if released:
            logger.warning(
                "retry_tasks_released_stale",
                extra={"released": released, "older_than_seconds": seconds},
            )
        return released

    # =========================================================================
    # Queries
    # =========================================================================

    def get_task(self, task_id: UUID) -> RetryTask:
        return self._get(task_id).to_dto()

    def list_tasks(
        self,
        tenant_id: str,
        *,
        status: RetryTaskStatus | None = None,
        kind: str | None = None,
        limit: int = 100,
    ) -> list[RetryTask]:
        stmt = select(RetryTaskModel).where(RetryTaskModel.tenant_id == tenant_id)
        if status is not None:
            stmt = stmt.where(RetryTaskModel.status == RetryTaskStatus(status).value)
        if kind is not None:
            stmt = stmt.where(RetryTaskModel.kind == kind)
        stmt = stmt.order_by(RetryTaskModel.created_at.desc(), RetryTaskModel.id).limit(limit)
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]

    def get_stats(self, tenant_id: str, *, kind: str | None = None) -> RetryStats:
        stmt = (
            select(RetryTaskModel.status, func.count())
            .where(RetryTaskModel.tenant_id == tenant_id)
            .group_by(RetryTaskModel.status)
        )
        if kind is not None:
            stmt = stmt.where(RetryTaskModel.kind == kind)
        counts = {status: count for status, count in self.session.execute(stmt).all()}
        return RetryStats(
            pending=counts.get(RetryTaskStatus.PENDING.value, 0),
            processing=counts.get(RetryTaskStatus.PROCESSING.value, 0),
            completed=counts.get(RetryTaskStatus.COMPLETED.value, 0),
            failed=counts.get(RetryTaskStatus.FAILED.value, 0),
        )

    # =========================================================================
    # Internals
    # =========================================================================

    def _get(self, task_id: UUID) -> RetryTaskModel:
        model = self.session.get(RetryTaskModel, task_id)
        if model is None:
            raise RetryTaskNotFoundError(str(task_id))
        return model

    def _require(
        self, task_id: UUID, status: RetryTaskStatus, operation: str
    ) -> RetryTaskModel:
        model = self._get(task_id)
        if model.status != status.value:
            raise RetryNotAllowedError(str(task_id), model.status, operation)
        return model
