"""
taxflow_services.workflow_orchestrator -- builds kernel services from config.

Responsibility:
    Creates every kernel service exactly once per session and wires the
    configured values into them: retry backoff and limits, the KSeF call
    timeout, the engine's conflict retries and list page size, and the
    log level.  ``build_retry_worker`` does the same for the background
    drain.

Architecture position:
    Services wiring.  Constructs; never commits.

Non-goals:
    - Does NOT manage transaction boundaries (caller's responsibility).
    - Does NOT own the Session lifecycle.

Usage:
    config = get_active_config()
    with session_scope() as session:
        orchestrator = WorkflowOrchestrator(session, config, access=resolver,
                                            collaborators=collaborators)
        orchestrator.engine.create_workflow(...)
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace
from pathlib import Path

from sqlalchemy.orm import Session

from taxflow_batch.handlers import RetryHandlerRegistry, default_handler_registry
from taxflow_batch.worker import RetryWorker
from taxflow_config import get_active_config
from taxflow_config.schema import BackoffConfig, TaxflowConfig
from taxflow_kernel.db.engine import get_session_factory, init_engine_from_url
from taxflow_kernel.domain.backoff import BackoffPolicy
from taxflow_kernel.domain.clock import Clock, SystemClock
from taxflow_kernel.domain.definitions import WorkflowRegistry, build_default_registry
from taxflow_kernel.domain.ports import (
    AccessResolver,
    AuditSink,
    FailureNotifier,
    InvoiceSubmitter,
    SubmissionFailureMarker,
)
from taxflow_kernel.domain.workflow import WorkflowType
from taxflow_kernel.logging_config import configure_logging, get_logger
from taxflow_kernel.services.retry_queue import RetryQueueService
from taxflow_kernel.services.step_dispatch import StepDispatcher
from taxflow_kernel.services.template_service import TemplateService
from taxflow_kernel.services.workflow_engine import WorkflowEngine
from taxflow_kernel.steps.base import StepCollaborators, StepHandler

logger = get_logger("services.orchestrator")


def backoff_from_config(settings: BackoffConfig) -> BackoffPolicy:
    return BackoffPolicy(
        base_delay_ms=settings.base_delay_ms,
        max_delay_ms=settings.max_delay_ms,
        jitter_max_ms=settings.jitter_max_ms,
    )


class WorkflowOrchestrator:
    """Kernel services for one session, configured from ``TaxflowConfig``.

    All services share the same Session, Clock and registry.  The
    submission timeout in ``config`` replaces the one on the given
    collaborators.
    """

    def __init__(
        self,
        session: Session,
        config: TaxflowConfig,
        *,
        access: AccessResolver,
        collaborators: StepCollaborators | None = None,
        handlers: dict[tuple[WorkflowType, str], StepHandler] | None = None,
        registry: WorkflowRegistry | None = None,
        clock: Clock | None = None,
        audit: AuditSink | None = None,
        failure_marker: SubmissionFailureMarker | None = None,
        notifier: FailureNotifier | None = None,
        backoff: BackoffPolicy | None = None,
    ) -> None:
        configure_logging(level=config.log_level)

        self.config = config
        self.clock = clock or SystemClock()
        self.registry = registry or build_default_registry()
        self.collaborators = replace(
            collaborators or StepCollaborators(),
            submission_timeout_seconds=config.submission.timeout_seconds,
        )

        queue_settings = config.retry_queue
        self.retry_queue = RetryQueueService(
            session,
            self.clock,
            backoff=backoff or backoff_from_config(queue_settings.backoff),
            max_attempts=queue_settings.max_attempts,
            batch_size=queue_settings.batch_size,
            default_priority=queue_settings.default_priority,
            stale_processing_seconds=queue_settings.stale_processing_seconds,
            failure_marker=failure_marker,
            notifier=notifier,
        )
        self.dispatcher = StepDispatcher(self.collaborators, handlers)
        self.templates = TemplateService(session, self.registry, self.clock)
        self.engine = WorkflowEngine(
            session,
            self.registry,
            self.dispatcher,
            self.clock,
            access=access,
            retry_queue=self.retry_queue,
            audit=audit,
            concurrent_modification_retries=config.engine.concurrent_modification_retries,
            default_list_limit=config.engine.default_list_limit,
        )

        logger.debug(
            "workflow_orchestrator_built",
            extra={
                "config_checksum": config.checksum,
                "workflow_types": [d.type.value for d in self.registry],
            },
        )


def build_workflow_orchestrator(
    session: Session,
    *,
    access: AccessResolver,
    config_path: Path | str | None = None,
    **kwargs,
) -> WorkflowOrchestrator:
    """Load the active configuration and build an orchestrator from it."""
    return WorkflowOrchestrator(
        session, get_active_config(config_path), access=access, **kwargs,
    )


def build_retry_worker(
    submitter: InvoiceSubmitter,
    config: TaxflowConfig,
    *,
    session_factory: Callable[[], Session] | None = None,
    handlers: RetryHandlerRegistry | None = None,
    clock: Clock | None = None,
    failure_marker: SubmissionFailureMarker | None = None,
    notifier: FailureNotifier | None = None,
    backoff: BackoffPolicy | None = None,
) -> RetryWorker:
    """Retry worker with the configured queue settings and KSeF timeout.

    Without ``session_factory`` the database engine is initialized from
    ``config.database_url``.

    Raises:
        ValueError: neither a session factory nor ``database_url`` is given.
    """
    configure_logging(level=config.log_level)

    if session_factory is None:
        if not config.database_url:
            raise ValueError("database_url is required when no session_factory is given")
        init_engine_from_url(config.database_url)
        session_factory = get_session_factory()

    return RetryWorker(
        session_factory,
        handlers or default_handler_registry(submitter, config.submission.timeout_seconds),
        clock,
        config.retry_queue,
        backoff=backoff,
        failure_marker=failure_marker,
        notifier=notifier,
    )
