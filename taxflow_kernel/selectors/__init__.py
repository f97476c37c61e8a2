"""Read-only selectors."""

from taxflow_kernel.selectors.base import BaseSelector
from taxflow_kernel.selectors.workflow_selector import WorkflowSelector

__all__ = ["BaseSelector", "WorkflowSelector"]
