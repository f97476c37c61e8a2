"""
taxflow_services -- wiring of kernel services from runtime configuration.

Responsibility:
    Turns a ``TaxflowConfig`` into constructed kernel services and a
    configured retry worker.  The only layer that reads ``taxflow_config``
    and passes the values on as constructor arguments.

Architecture position:
    Dependency direction:
        taxflow_services/ -> taxflow_kernel/, taxflow_batch/, taxflow_config/
        taxflow_kernel/   -> taxflow_services/ (FORBIDDEN)
        taxflow_batch/    -> taxflow_services/ (FORBIDDEN)
"""

from taxflow_services.workflow_orchestrator import (
    WorkflowOrchestrator,
    backoff_from_config,
    build_retry_worker,
    build_workflow_orchestrator,
)

__all__ = [
    "WorkflowOrchestrator",
    "backoff_from_config",
    "build_retry_worker",
    "build_workflow_orchestrator",
]
