"""Workflow-level domain errors."""

from meter_provisioning.errors import ClassifiedError
from meter_provisioning.workflow.enums import ValidationFailure, WorkflowStep


class WorkflowError(Exception):
    """Base workflow exception."""

    error_code = "workflow_error"


class InvalidWorkflowTransitionError(WorkflowError):
    """Raised when a workflow step transition is not allowed."""

    error_code = "invalid_workflow_transition"

    def __init__(self, current_step: WorkflowStep, new_step: WorkflowStep) -> None:
        message = f"cannot transition workflow from {current_step.value} to {new_step.value}"
        super().__init__(message)
        self.current_step = current_step
        self.new_step = new_step


class WorkflowStepError(WorkflowError):
    """Raised when an operation is not available in the current step."""

    error_code = "workflow_step_error"

    def __init__(self, operation: str, current_step: WorkflowStep) -> None:
        super().__init__(f"{operation} is not available in the {current_step.value} step")
        self.operation = operation
        self.current_step = current_step


class WorkflowBusyError(WorkflowError):
    """Raised when an operation would overlap requests already in flight."""

    error_code = "workflow_busy"


class MacValidationError(WorkflowError):
    """Raised when an address is rejected before it enters the workflow."""

    error_code = "mac_validation_error"

    def __init__(
        self,
        reason: ValidationFailure,
        message: str,
        *,
        classified: ClassifiedError | None = None,
    ) -> None:
        super().__init__(message)
        self.reason = reason
        self.classified = classified


class RetryNotAllowedError(WorkflowError):
    """Raised when every failure a retry would resend is non-retryable."""

    error_code = "retry_not_allowed"

    def __init__(self, operation: str) -> None:
        super().__init__(f"{operation} has no retryable failures to resend")
        self.operation = operation
