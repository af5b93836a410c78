"""External service integrations."""

from meter_provisioning.integrations.directory import (
    DeviceRecord,
    DirectoryClient,
    DirectoryClientConfig,
    DirectoryClientProtocol,
    ProvisionOutcome,
    ProvisionRequest,
    create_directory_client,
    parse_search_payload,
)

__all__ = [
    "DeviceRecord",
    "DirectoryClient",
    "DirectoryClientConfig",
    "DirectoryClientProtocol",
    "ProvisionOutcome",
    "ProvisionRequest",
    "create_directory_client",
    "parse_search_payload",
]
