from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field

import pytest

from meter_provisioning.errors import ClassifiedError
from meter_provisioning.integrations.directory import (
    DeviceRecord,
    ProvisionOutcome,
    ProvisionRequest,
)
from meter_provisioning.reference_data import ProvisioningDefaults
from meter_provisioning.workflow import WorkflowController


@dataclass(slots=True)
class StubDirectoryClient:
    found: set[str] = field(default_factory=set)
    lookup_failures: dict[str, Exception] = field(default_factory=dict)
    provision_failures: dict[str, ClassifiedError] = field(default_factory=dict)
    search_calls: list[str] = field(default_factory=list)
    provision_calls: list[ProvisionRequest] = field(default_factory=list)
    in_flight: int = 0
    max_in_flight: int = 0
    search_gate: asyncio.Event | None = None
    provision_gate: asyncio.Event | None = None

    async def search_by_mac(self, mac: str) -> list[DeviceRecord]:
        self.search_calls.append(mac)
        await self._yield_while_in_flight(self.search_gate)
        failure = self.lookup_failures.get(mac)
        if failure is not None:
            raise failure
        if mac in self.found:
            return [DeviceRecord(mac=mac, account="acct", configfile="existing", isp="isp")]
        return []

    async def add_hsd(self, request: ProvisionRequest) -> ProvisionOutcome:
        self.provision_calls.append(request)
        await self._yield_while_in_flight(self.provision_gate)
        error = self.provision_failures.get(request.mac)
        if error is not None:
            return ProvisionOutcome(success=False, error=error)
        return ProvisionOutcome(success=True)

    async def _yield_while_in_flight(self, gate: asyncio.Event | None) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if gate is not None:
                await gate.wait()
        finally:
            self.in_flight -= 1


@dataclass(slots=True)
class StaticOuiAllowList:
    approved: frozenset[str] = frozenset({"A1B2C3"})

    async def is_approved(self, oui: str) -> bool:
        return oui.upper() in self.approved


@dataclass(slots=True)
class StaticDefaultsSource:
    result: ProvisioningDefaults | Exception = field(
        default_factory=lambda: ProvisioningDefaults(
            account="acct",
            isp="isp",
            configfiles=("cfg0", "cfg1", "cfg2", "cfg3"),
        )
    )
    load_calls: int = 0

    async def load_defaults(self) -> ProvisioningDefaults:
        self.load_calls += 1
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


@pytest.fixture
def directory_client() -> StubDirectoryClient:
    return StubDirectoryClient()


@pytest.fixture
def allow_list() -> StaticOuiAllowList:
    return StaticOuiAllowList()


@pytest.fixture
def defaults_source() -> StaticDefaultsSource:
    return StaticDefaultsSource()


@pytest.fixture
def controller_factory(
    directory_client: StubDirectoryClient,
    allow_list: StaticOuiAllowList,
    defaults_source: StaticDefaultsSource,
) -> Callable[[int], WorkflowController]:
    def factory(address_count: int = 4) -> WorkflowController:
        return WorkflowController(
            directory_client,
            allow_list,
            defaults_source,
            address_count=address_count,
        )

    return factory
