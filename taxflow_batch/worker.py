"""
RetryWorker -- in-process polling drain of the retry queue.

Contract:
    Every ``poll_interval_seconds`` the worker releases stale claims,
    claims a batch of eligible tasks and runs each through the handler
    registered for its kind.  A success completes the task; an exception
    reschedules it with backoff (or exhausts it).

Architecture: taxflow_batch.  Owns its sessions through a session
    factory: one transaction for the claim, then one per task so a single
    failing task never rolls back the others.

Invariants enforced:
    - All timestamps come from the injected Clock.
    - Claims are committed before any external call is made.
    - Graceful shutdown: the stop signal is checked between tasks.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable

from sqlalchemy.orm import Session

from taxflow_config.schema import RetryQueueConfig
from taxflow_kernel.domain.backoff import BackoffPolicy
from taxflow_kernel.domain.clock import Clock, SystemClock
from taxflow_kernel.domain.dtos import RetryTask, RetryTaskStatus
from taxflow_kernel.domain.ports import FailureNotifier, SubmissionFailureMarker
from taxflow_kernel.logging_config import LogContext, get_logger
from taxflow_kernel.services.retry_queue import RetryQueueService
from taxflow_kernel.steps.base import error_text

from taxflow_batch.handlers import RetryHandlerRegistry

logger = get_logger("batch.retry_worker")


@dataclass(frozen=True)
class RetryTickResult:
    """Counters for one ``tick()``."""

    released: int = 0
    claimed: int = 0
    completed: int = 0
    rescheduled: int = 0
    failed: int = 0
    errors: int = 0


class RetryWorker:
    """Background drain of ``retry_tasks``.

    Contract:
        - ``tick()`` performs one drain cycle synchronously.
        - ``start()`` / ``stop()`` run ticks on a daemon thread.

    Non-goals:
        - NOT a distributed scheduler; concurrent workers are safe only
          because claims are conditional updates.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        handlers: RetryHandlerRegistry,
        clock: Clock | None = None,
        settings: RetryQueueConfig | None = None,
        *,
        backoff: BackoffPolicy | None = None,
        failure_marker: SubmissionFailureMarker | None = None,
        notifier: FailureNotifier | None = None,
    ):
        self._session_factory = session_factory
        self._handlers = handlers
        self._clock = clock or SystemClock()
        self._settings = settings or RetryQueueConfig()
        self._failure_marker = failure_marker
        self._notifier = notifier
        self._backoff = backoff or BackoffPolicy(
            base_delay_ms=self._settings.backoff.base_delay_ms,
            max_delay_ms=self._settings.backoff.max_delay_ms,
            jitter_max_ms=self._settings.backoff.jitter_max_ms,
        )
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> RetryTickResult:
        """Run one drain cycle (public for testing)."""
        session = self._session_factory()
        try:
            queue = self._queue(session)
            released = queue.release_stale()
            claimed = queue.drain_eligible()
            session.commit()
        except Exception:
            session.rollback()
            logger.exception("retry_worker_claim_failed")
            return RetryTickResult(errors=1)
        finally:
            session.close()

        counts = {"completed": 0, "rescheduled": 0, "failed": 0, "errors": 0}
        for task in claimed:
            if self._stop_event.is_set():
                break
            counts[self._process(task)] += 1

        result = RetryTickResult(released=released, claimed=len(claimed), **counts)
        logger.info(
            "retry_worker_tick",
            extra={
                "released": result.released,
                "claimed": result.claimed,
                "completed": result.completed,
                "rescheduled": result.rescheduled,
                "failed": result.failed,
                "errors": result.errors,
            },
        )
        return result

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="taxflow-retry-worker",
            daemon=True,
        )
        self._thread.start()
        logger.info(
            "retry_worker_started",
            extra={"poll_interval_seconds": self._settings.poll_interval_seconds},
        )

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current task to finish."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("retry_worker_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("retry_worker_tick_exception")
            self._stop_event.wait(timeout=self._settings.poll_interval_seconds)

    def _queue(self, session: Session) -> RetryQueueService:
        return RetryQueueService(
            session,
            self._clock,
            backoff=self._backoff,
            max_attempts=self._settings.max_attempts,
            batch_size=self._settings.batch_size,
            default_priority=self._settings.default_priority,
            stale_processing_seconds=self._settings.stale_processing_seconds,
            failure_marker=self._failure_marker,
            notifier=self._notifier,
        )

    def _process(self, task: RetryTask) -> str:
        """Run one claimed task; returns the counter to bump."""
        session = self._session_factory()
        try:
            with LogContext.bind(task_id=str(task.id), tenant_id=task.tenant_id):
                queue = self._queue(session)
                outcome = self._run_handler(queue, task)
            session.commit()
            return outcome
        except Exception:
            session.rollback()
            logger.exception(
                "retry_task_processing_failed",
                extra={"task_id": str(task.id), "kind": task.kind},
            )
            return "errors"
        finally:
            session.close()

    def _run_handler(self, queue: RetryQueueService, task: RetryTask) -> str:
        if task.kind not in self._handlers:
            logger.error(
                "retry_handler_missing",
                extra={"task_id": str(task.id), "kind": task.kind},
            )
            updated = queue.reschedule(
                task.id, f"No retry handler registered for kind '{task.kind}'"
            )
            return _counter_for(updated)

        handler = self._handlers.get(task.kind)
        try:
            result = handler.handle(task)
        except Exception as exc:
            logger.warning(
                "retry_task_attempt_failed",
                extra={
                    "task_id": str(task.id),
                    "kind": task.kind,
                    "attempt": task.attempt + 1,
                    "error": error_text(exc),
                },
            )
            updated = queue.reschedule(task.id, error_text(exc))
            return _counter_for(updated)

        queue.complete(task.id, result)
        return "completed"


def _counter_for(task: RetryTask) -> str:
    return "failed" if task.status == RetryTaskStatus.FAILED else "rescheduled"
