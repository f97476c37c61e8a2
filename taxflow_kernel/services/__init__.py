"""Kernel services: flush-only units of work over a caller-owned Session."""

from taxflow_kernel.services.audit import LoggingAuditSink
from taxflow_kernel.services.retry_queue import RetryQueueService
from taxflow_kernel.services.step_dispatch import StepDispatcher
from taxflow_kernel.services.template_service import TemplateService
from taxflow_kernel.services.workflow_engine import WorkflowEngine

__all__ = [
    "LoggingAuditSink",
    "RetryQueueService",
    "StepDispatcher",
    "TemplateService",
    "WorkflowEngine",
]
