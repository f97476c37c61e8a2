"""ORM models for taxflow."""

from taxflow_kernel.models.retry_task import RetryTaskModel
from taxflow_kernel.models.workflow import WorkflowInstanceModel, WorkflowTemplateModel

__all__ = [
    "RetryTaskModel",
    "WorkflowInstanceModel",
    "WorkflowTemplateModel",
]
