"""Validate, check-status, and provision workflow for one technician session."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from meter_provisioning.config import AppSettings
from meter_provisioning.errors import (
    ClassifiedError,
    ClassifiedRequestError,
    ErrorContext,
    ErrorSource,
    classify_error,
)
from meter_provisioning.integrations.directory import (
    DeviceRecord,
    DirectoryClientProtocol,
    ProvisionOutcome,
    ProvisionRequest,
    create_directory_client,
)
from meter_provisioning.mac import (
    MAX_SEQUENCE_LENGTH,
    MacOverflowError,
    extract_oui,
    generate_mac_sequence,
    is_complete_mac,
    normalize_mac,
    validate_mac_format,
)
from meter_provisioning.reference_data import (
    OuiAllowList,
    ProvisioningDefaults,
    ProvisioningDefaultsSource,
    ReferenceDataError,
    create_defaults_source,
    create_oui_allow_list,
)
from meter_provisioning.workflow.enums import (
    SETTLED_LOOKUP_STATUSES,
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
    WorkflowStepError,
)

logger = logging.getLogger(__name__)

INCOMPLETE_MESSAGE = "Please enter a complete MAC address (12 hex digits)"
MALFORMED_MESSAGE = "Invalid MAC address format"
OUI_NOT_APPROVED_MESSAGE = "This is not a known meter: the vendor prefix is not approved."


@dataclass(slots=True)
class AddressState:
    address: str
    configfile: str
    lookup_status: LookupStatus = LookupStatus.PENDING
    device_record: DeviceRecord | None = None
    lookup_error: ClassifiedError | None = None
    provision_state: ProvisionState = ProvisionState.PENDING
    error: ClassifiedError | None = None


@dataclass(frozen=True, slots=True)
class ProvisioningSummary:
    succeeded: int
    total: int
    failed_addresses: tuple[str, ...] = ()

    @property
    def all_succeeded(self) -> bool:
        return self.succeeded == self.total


class WorkflowController:
    """Drive one session through input, status, and provisioning.

    ``address_count`` selects the variant: 1 provisions the validated address
    only, N provisions N consecutive addresses starting at it, each with the
    configfile at the same index in the provisioning defaults.

    Status lookups for the tracked addresses run concurrently and each one
    only touches its own ``AddressState``. Provisioning runs one address at a
    time in address order; a failed address never stops the rest.
    """

    def __init__(
        self,
        client: DirectoryClientProtocol,
        allow_list: OuiAllowList,
        defaults_source: ProvisioningDefaultsSource,
        *,
        address_count: int = 1,
    ) -> None:
        if address_count < 1 or address_count > MAX_SEQUENCE_LENGTH:
            raise ValueError(
                f"address_count must be between 1 and {MAX_SEQUENCE_LENGTH} "
                f"(received {address_count})"
            )
        self._client = client
        self._allow_list = allow_list
        self._defaults_source = defaults_source
        self._address_count = address_count
        self._defaults: ProvisioningDefaults | None = None
        self._step = WorkflowStep.INPUT
        self._addresses: list[AddressState] = []
        self._status_error: ClassifiedError | None = None
        self._provision_error: ClassifiedError | None = None
        self._busy = False

    @property
    def step(self) -> WorkflowStep:
        return self._step

    @property
    def address_count(self) -> int:
        return self._address_count

    @property
    def addresses(self) -> tuple[AddressState, ...]:
        return tuple(self._addresses)

    @property
    def status_error(self) -> ClassifiedError | None:
        return self._status_error

    @property
    def provision_error(self) -> ClassifiedError | None:
        return self._provision_error

    @property
    def is_busy(self) -> bool:
        return self._busy

    @property
    def requires_confirmation(self) -> bool:
        return any(state.lookup_status is LookupStatus.FOUND for state in self._addresses)

    @property
    def lookups_settled(self) -> bool:
        return all(state.lookup_status in SETTLED_LOOKUP_STATUSES for state in self._addresses)

    @property
    def can_retry_status_check(self) -> bool:
        return bool(_retryable(self._failed_lookups(), lambda state: state.lookup_error))

    @property
    def can_retry_provisioning(self) -> bool:
        return bool(_retryable(self._failed_provisions(), lambda state: state.error))

    async def validate(self, text: str) -> list[AddressState]:
        """Validate ``text`` and, on success, enter the status step.

        Rejections raise ``MacValidationError`` and leave the workflow in the
        input step without any directory request being made.
        """
        self._ensure_idle()
        if self._step is not WorkflowStep.INPUT:
            raise InvalidWorkflowTransitionError(self._step, WorkflowStep.STATUS)

        mac = normalize_mac(text)
        if not is_complete_mac(mac):
            raise MacValidationError(ValidationFailure.INCOMPLETE, INCOMPLETE_MESSAGE)
        if not validate_mac_format(mac):
            raise MacValidationError(ValidationFailure.MALFORMED, MALFORMED_MESSAGE)

        oui = extract_oui(mac)
        if not await self._allow_list.is_approved(oui):
            logger.info("rejected MAC with unapproved OUI", extra={"data": {"mac": mac, "oui": oui}})
            raise MacValidationError(
                ValidationFailure.OUI_NOT_APPROVED,
                OUI_NOT_APPROVED_MESSAGE,
                classified=classify_error(
                    f"OUI {oui} is not approved", ErrorContext(source=ErrorSource.OUI)
                ),
            )

        try:
            addresses = generate_mac_sequence(mac, self._address_count)
        except MacOverflowError as exc:
            raise MacValidationError(ValidationFailure.OVERFLOW, str(exc)) from exc

        defaults = await self._load_defaults()
        try:
            states = [
                AddressState(address=address, configfile=defaults.configfile_for(index))
                for index, address in enumerate(addresses)
            ]
        except ReferenceDataError as exc:
            raise _config_validation_error(exc) from exc

        self._transition(WorkflowStep.STATUS)
        self._addresses = states
        self._status_error = None
        self._provision_error = None
        logger.info(
            "MAC validated",
            extra={"data": {"mac": mac, "addresses": addresses}},
        )

        await self.check_status()
        return list(self._addresses)

    async def check_status(self) -> None:
        """Look up every address that has no settled answer yet."""
        self._ensure_idle()
        self._require_step("check_status", WorkflowStep.STATUS)
        await self._run_lookups(
            state
            for state in self._addresses
            if state.lookup_status in {LookupStatus.PENDING, LookupStatus.UNKNOWN}
        )

    async def retry_status_check(self) -> None:
        """Re-query ``unknown`` addresses whose failure category is retryable.

        Raises ``RetryNotAllowedError`` without sending anything when every
        failed lookup is non-retryable.
        """
        self._ensure_idle()
        self._require_step("retry_status_check", WorkflowStep.STATUS)
        failed = self._failed_lookups()
        targets = _retryable(failed, lambda state: state.lookup_error)
        if failed and not targets:
            raise RetryNotAllowedError("retry_status_check")

        skipped = [state.lookup_error for state in failed if state not in targets]
        self._status_error = skipped[-1] if skipped else None
        await self._run_lookups(targets)

    async def request_provisioning(self) -> ProvisioningSummary | None:
        """Provision, or return None after entering the confirmation step.

        Confirmation is required whenever any tracked address already has a
        directory record, since provisioning reapplies its configuration.
        """
        self._ensure_idle()
        self._require_step("request_provisioning", WorkflowStep.STATUS)
        if self.requires_confirmation:
            self._transition(WorkflowStep.CONFIRMING)
            return None
        return await self._start_provisioning()

    async def confirm_provisioning(self) -> ProvisioningSummary:
        self._ensure_idle()
        self._require_step("confirm_provisioning", WorkflowStep.CONFIRMING)
        return await self._start_provisioning()

    def cancel_confirmation(self) -> None:
        self._require_step("cancel_confirmation", WorkflowStep.CONFIRMING)
        self._transition(WorkflowStep.STATUS)

    async def retry_provisioning(self) -> ProvisioningSummary:
        """Re-send addresses in ``error`` whose failure category is retryable."""
        self._ensure_idle()
        self._require_step("retry_provisioning", WorkflowStep.PROVISIONING)
        failed = self._failed_provisions()
        targets = _retryable(failed, lambda state: state.error)
        if failed and not targets:
            raise RetryNotAllowedError("retry_provisioning")
        return await self._provision(targets)

    def summary(self) -> ProvisioningSummary:
        failed = tuple(
            state.address
            for state in self._addresses
            if state.provision_state is ProvisionState.ERROR
        )
        succeeded = sum(
            1 for state in self._addresses if state.provision_state is ProvisionState.COMPLETE
        )
        return ProvisioningSummary(
            succeeded=succeeded,
            total=len(self._addresses),
            failed_addresses=failed,
        )

    def reset(self) -> None:
        self._transition(WorkflowStep.INPUT)
        self._addresses = []
        self._status_error = None
        self._provision_error = None

    async def _start_provisioning(self) -> ProvisioningSummary:
        self._transition(WorkflowStep.PROVISIONING)
        return await self._provision(self._addresses)

    async def _run_lookups(self, states: Iterable[AddressState]) -> None:
        targets = list(states)
        if not targets:
            return

        self._busy = True
        try:
            for state in targets:
                state.lookup_status = LookupStatus.CHECKING
                state.device_record = None
                state.lookup_error = None
            await asyncio.gather(*(self._check_address(state) for state in targets))
        finally:
            self._busy = False

    async def _check_address(self, state: AddressState) -> None:
        try:
            records = await self._client.search_by_mac(state.address)
        except ClassifiedRequestError as exc:
            self._record_lookup_failure(state, exc.classified)
            return
        except Exception as exc:
            self._record_lookup_failure(
                state, classify_error(exc, ErrorContext(source=ErrorSource.SEARCH))
            )
            return

        if records:
            state.lookup_status = LookupStatus.FOUND
            state.device_record = records[0]
        else:
            state.lookup_status = LookupStatus.NOT_FOUND

    def _record_lookup_failure(self, state: AddressState, classified: ClassifiedError) -> None:
        state.lookup_status = LookupStatus.UNKNOWN
        state.lookup_error = classified
        self._status_error = classified
        logger.warning(
            "status check failed",
            extra={"data": {"mac": state.address, "classified_error": classified.to_dict()}},
        )

    async def _provision(self, states: Iterable[AddressState]) -> ProvisioningSummary:
        targets = list(states)
        defaults = await self._load_defaults()
        self._provision_error = next(
            (
                state.error
                for state in reversed(self._addresses)
                if state.provision_state is ProvisionState.ERROR and state not in targets
            ),
            None,
        )
        self._busy = True
        try:
            for state in targets:
                state.provision_state = ProvisionState.PROVISIONING
                state.error = None
                outcome = await self._provision_address(state, defaults)
                if outcome.success:
                    state.provision_state = ProvisionState.COMPLETE
                    continue

                error = outcome.error or classify_error(
                    "directory did not confirm provisioning",
                    ErrorContext(source=ErrorSource.PROVISION),
                )
                state.provision_state = ProvisionState.ERROR
                state.error = error
                self._provision_error = error
        finally:
            self._busy = False

        summary = self.summary()
        logger.info(
            "provisioning finished",
            extra={
                "data": {
                    "succeeded": summary.succeeded,
                    "total": summary.total,
                    "failed": list(summary.failed_addresses),
                }
            },
        )
        return summary

    async def _provision_address(
        self,
        state: AddressState,
        defaults: ProvisioningDefaults,
    ) -> ProvisionOutcome:
        request = ProvisionRequest(
            mac=state.address,
            account=defaults.account,
            configfile=state.configfile,
            isp=defaults.isp,
        )
        try:
            return await self._client.add_hsd(request)
        except Exception as exc:
            return ProvisionOutcome(
                success=False,
                error=classify_error(exc, ErrorContext(source=ErrorSource.PROVISION)),
            )

    async def _load_defaults(self) -> ProvisioningDefaults:
        if self._defaults is None:
            try:
                self._defaults = await self._defaults_source.load_defaults()
            except ReferenceDataError as exc:
                raise _config_validation_error(exc) from exc
        return self._defaults

    def _failed_lookups(self) -> list[AddressState]:
        return [state for state in self._addresses if state.lookup_status is LookupStatus.UNKNOWN]

    def _failed_provisions(self) -> list[AddressState]:
        return [
            state for state in self._addresses if state.provision_state is ProvisionState.ERROR
        ]

    def _transition(self, new_step: WorkflowStep) -> None:
        if not can_transition_step(self._step, new_step):
            raise InvalidWorkflowTransitionError(self._step, new_step)
        self._step = new_step

    def _require_step(self, operation: str, step: WorkflowStep) -> None:
        if self._step is not step:
            raise WorkflowStepError(operation, self._step)

    def _ensure_idle(self) -> None:
        if self._busy:
            raise WorkflowBusyError("directory requests are already in flight for this workflow")


def create_workflow_controller(
    settings: AppSettings,
    *,
    address_count: int | None = None,
    client: DirectoryClientProtocol | None = None,
) -> WorkflowController:
    return WorkflowController(
        client or create_directory_client(settings),
        create_oui_allow_list(settings),
        create_defaults_source(settings),
        address_count=(
            settings.workflow_address_count if address_count is None else address_count
        ),
    )


def _retryable(
    states: list[AddressState],
    error_of: Callable[[AddressState], ClassifiedError | None],
) -> list[AddressState]:
    # An unclassified failure counts as unknown, which is retryable.
    return [state for state in states if (error := error_of(state)) is None or error.is_retryable]


def _config_validation_error(exc: ReferenceDataError) -> MacValidationError:
    classified = classify_error(exc, ErrorContext(source=ErrorSource.CONFIG))
    return MacValidationError(ValidationFailure.CONFIG, classified.message, classified=classified)
