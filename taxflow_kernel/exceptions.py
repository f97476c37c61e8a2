"""
Typed Exception Hierarchy for the Taxflow Kernel.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from TaxflowError:

    TaxflowError (base)
    |
    +-- ConfigurationError
    |   +-- UnsupportedWorkflowTypeError
    |   +-- UnknownStepError
    |   +-- InvalidWorkflowDefinitionError
    |
    +-- WorkflowError
    |   +-- WorkflowNotFoundError
    |   +-- StepNotFoundError
    |   +-- InvalidTransitionError
    |   +-- InvalidOperationError
    |
    +-- AccessDeniedError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- RetryQueueError
    |   +-- RetryTaskNotFoundError
    |   +-- RetryNotAllowedError
    |
    +-- SubmissionError
    |   +-- SubmissionTimeoutError
    |
    +-- TemplateError
        +-- TemplateNotFoundError
        +-- TemplateValidationError
        +-- TemplateInUseError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Configuration   | UNSUPPORTED_WORKFLOW_TYPE   | No definition registered for the type
                | UNKNOWN_STEP                | No handler for (type, step_id)
                | INVALID_WORKFLOW_DEFINITION | Definition references unknown states
----------------|-----------------------------|-----------------------------------------
Workflow        | WORKFLOW_NOT_FOUND          | Instance ID doesn't exist for tenant
                | STEP_NOT_FOUND              | Step is not part of the definition
                | INVALID_TRANSITION          | (from, to) not in the transition table
                | INVALID_OPERATION           | Cancel/execute on a terminal instance
----------------|-----------------------------|-----------------------------------------
Access          | ACCESS_DENIED               | Tenant/company/customer not resolvable
----------------|-----------------------------|-----------------------------------------
Concurrency     | OPTIMISTIC_LOCK_CONFLICT    | Concurrent modification detected
----------------|-----------------------------|-----------------------------------------
Retry queue     | RETRY_TASK_NOT_FOUND        | Task ID doesn't exist
                | RETRY_NOT_ALLOWED           | Task status forbids the operation
----------------|-----------------------------|-----------------------------------------
Submission      | SUBMISSION_TIMEOUT          | External submission exceeded deadline
----------------|-----------------------------|-----------------------------------------
Template        | TEMPLATE_NOT_FOUND          | Template ID doesn't exist for tenant
                | TEMPLATE_VALIDATION_FAILED  | Name/steps invalid
                | TEMPLATE_IN_USE             | Active workflows still reference it

Configuration errors are never retried. Invariant violations reject the
operation without mutating state. ConcurrencyError is retried once by the
engine before it reaches the caller.
"""


class TaxflowError(Exception):
    """
    Base exception for all taxflow errors.

    All subclasses carry a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "TAXFLOW_ERROR"


# Configuration-related exceptions


class ConfigurationError(TaxflowError):
    """Caller and static definition registry disagree."""

    code: str = "CONFIGURATION_ERROR"


class UnsupportedWorkflowTypeError(ConfigurationError):
    """No workflow definition exists for the requested type."""

    code: str = "UNSUPPORTED_WORKFLOW_TYPE"

    def __init__(self, workflow_type: str):
        self.workflow_type = workflow_type
        super().__init__(f"Unsupported workflow type: {workflow_type}")


class UnknownStepError(ConfigurationError):
    """No step handler is registered for (workflow_type, step_id)."""

    code: str = "UNKNOWN_STEP"

    def __init__(self, workflow_type: str, step_id: str):
        self.workflow_type = workflow_type
        self.step_id = step_id
        super().__init__(
            f"No step handler registered for {workflow_type}/{step_id}"
        )


class InvalidWorkflowDefinitionError(ConfigurationError):
    """Workflow definition is internally inconsistent."""

    code: str = "INVALID_WORKFLOW_DEFINITION"

    def __init__(self, workflow_type: str, reason: str):
        self.workflow_type = workflow_type
        self.reason = reason
        super().__init__(
            f"Invalid workflow definition {workflow_type}: {reason}"
        )


# Workflow-related exceptions


class WorkflowError(TaxflowError):
    """Base exception for workflow instance errors."""

    code: str = "WORKFLOW_ERROR"


class WorkflowNotFoundError(WorkflowError):
    """Workflow instance with given ID was not found."""

    code: str = "WORKFLOW_NOT_FOUND"

    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"Workflow not found: {workflow_id}")


class StepNotFoundError(WorkflowError):
    """Step ID is not part of the workflow definition."""

    code: str = "STEP_NOT_FOUND"

    def __init__(self, workflow_type: str, step_id: str):
        self.workflow_type = workflow_type
        self.step_id = step_id
        super().__init__(f"Step {step_id} not found in workflow {workflow_type}")


class InvalidTransitionError(WorkflowError):
    """State change is not in the definition's transition table."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, workflow_id: str, from_state: str, to_state: str):
        self.workflow_id = workflow_id
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Invalid transition from {from_state} to {to_state} "
            f"for workflow {workflow_id}"
        )


class InvalidOperationError(WorkflowError):
    """Operation is not allowed in the workflow's current state."""

    code: str = "INVALID_OPERATION"

    def __init__(self, workflow_id: str, operation: str, state: str):
        self.workflow_id = workflow_id
        self.operation = operation
        self.state = state
        super().__init__(
            f"Cannot {operation} workflow {workflow_id} in state {state}"
        )


# Access-related exceptions


class AccessDeniedError(TaxflowError):
    """Tenant, company or customer reference did not resolve."""

    code: str = "ACCESS_DENIED"

    def __init__(self, tenant_id: str, resource_type: str, resource_id: str):
        self.tenant_id = tenant_id
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(
            f"Access denied to {resource_type} {resource_id} "
            f"for tenant {tenant_id}"
        )


# Concurrency-related exceptions


class ConcurrencyError(TaxflowError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


# Retry-queue-related exceptions


class RetryQueueError(TaxflowError):
    """Base exception for retry queue errors."""

    code: str = "RETRY_QUEUE_ERROR"


class RetryTaskNotFoundError(RetryQueueError):
    """Retry task with given ID was not found."""

    code: str = "RETRY_TASK_NOT_FOUND"

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Retry task not found: {task_id}")


class RetryNotAllowedError(RetryQueueError):
    """Task status does not permit the requested operation."""

    code: str = "RETRY_NOT_ALLOWED"

    def __init__(self, task_id: str, status: str, operation: str):
        self.task_id = task_id
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} retry task {task_id} in status {status}"
        )


# Submission-related exceptions


class SubmissionError(TaxflowError):
    """External e-invoice submission failed."""

    code: str = "SUBMISSION_ERROR"


class SubmissionTimeoutError(SubmissionError):
    """External submission did not answer within the deadline."""

    code: str = "SUBMISSION_TIMEOUT"

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Submission timed out after {timeout_seconds}s")


# Template-related exceptions


class TemplateError(TaxflowError):
    """Base exception for workflow template errors."""

    code: str = "TEMPLATE_ERROR"


class TemplateNotFoundError(TemplateError):
    """Template with given ID was not found."""

    code: str = "TEMPLATE_NOT_FOUND"

    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"Workflow template not found: {template_id}")


class TemplateValidationError(TemplateError):
    """Template name or step list is invalid."""

    code: str = "TEMPLATE_VALIDATION_FAILED"

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(f"Template validation failed: {'; '.join(errors)}")


class TemplateInUseError(TemplateError):
    """Template is referenced by non-terminal workflow instances."""

    code: str = "TEMPLATE_IN_USE"

    def __init__(self, template_id: str, active_count: int):
        self.template_id = template_id
        self.active_count = active_count
        super().__init__(
            f"Cannot delete template {template_id}: "
            f"{active_count} active workflow(s) still use it"
        )
