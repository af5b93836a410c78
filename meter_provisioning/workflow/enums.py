"""Workflow enums and transition helpers."""

from enum import StrEnum


class WorkflowStep(StrEnum):
    INPUT = "input"
    STATUS = "status"
    CONFIRMING = "confirming"
    PROVISIONING = "provisioning"


class LookupStatus(StrEnum):
    PENDING = "pending"
    CHECKING = "checking"
    FOUND = "found"
    NOT_FOUND = "not-found"
    UNKNOWN = "unknown"


class ProvisionState(StrEnum):
    PENDING = "pending"
    PROVISIONING = "provisioning"
    COMPLETE = "complete"
    ERROR = "error"


class ValidationFailure(StrEnum):
    INCOMPLETE = "incomplete"
    MALFORMED = "malformed"
    OUI_NOT_APPROVED = "oui_not_approved"
    OVERFLOW = "overflow"
    CONFIG = "config"


SETTLED_LOOKUP_STATUSES = frozenset(
    {
        LookupStatus.FOUND,
        LookupStatus.NOT_FOUND,
        LookupStatus.UNKNOWN,
    }
)

# Reset to INPUT is always allowed and is not listed here.
ALLOWED_STEP_TRANSITIONS: dict[WorkflowStep, frozenset[WorkflowStep]] = {
    WorkflowStep.INPUT: frozenset({WorkflowStep.STATUS}),
    WorkflowStep.STATUS: frozenset({WorkflowStep.CONFIRMING, WorkflowStep.PROVISIONING}),
    WorkflowStep.CONFIRMING: frozenset({WorkflowStep.STATUS, WorkflowStep.PROVISIONING}),
    WorkflowStep.PROVISIONING: frozenset(),
}


def can_transition_step(current_step: WorkflowStep, new_step: WorkflowStep) -> bool:
    if new_step is WorkflowStep.INPUT:
        return True
    return new_step in ALLOWED_STEP_TRANSITIONS.get(current_step, frozenset())
