"""Technician provisioning workflow."""

from meter_provisioning.workflow.controller import (
    AddressState,
    ProvisioningSummary,
    WorkflowController,
    create_workflow_controller,
)
from meter_provisioning.workflow.enums import (
    LookupStatus,
    ProvisionState,
    ValidationFailure,
    WorkflowStep,
    can_transition_step,
)
from meter_provisioning.workflow.errors import (
    InvalidWorkflowTransitionError,
    MacValidationError,
    RetryNotAllowedError,
    WorkflowBusyError,
    WorkflowError,
    WorkflowStepError,
)

__all__ = [
    "AddressState",
    "InvalidWorkflowTransitionError",
    "LookupStatus",
    "MacValidationError",
    "ProvisionState",
    "ProvisioningSummary",
    "RetryNotAllowedError",
    "ValidationFailure",
    "WorkflowBusyError",
    "WorkflowController",
    "WorkflowError",
    "WorkflowStep",
    "WorkflowStepError",
    "can_transition_step",
    "create_workflow_controller",
]
