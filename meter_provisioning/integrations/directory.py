"""Backend directory client for MAC status lookup and HSD provisioning."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Mapping
from dataclasses import asdict, dataclass, replace
from typing import Any, Protocol
from urllib.parse import quote

import httpx

from meter_provisioning.config import AppSettings
from meter_provisioning.errors import (
    ClassifiedError,
    ClassifiedRequestError,
    ErrorContext,
    ErrorSource,
    classify_error,
    create_error_from_response,
    is_proxy_failure,
)
from meter_provisioning.mac import mac_to_int

logger = logging.getLogger(__name__)

HTTPClientFactory = Callable[..., httpx.AsyncClient]

_TIMEOUT_MESSAGE = "Request timed out"


@dataclass(frozen=True, slots=True)
class DeviceRecord:
    mac: str
    account: str
    configfile: str
    isp: str
    custom_fields: dict[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class ProvisionRequest:
    mac: str
    account: str
    configfile: str
    isp: str

    def to_payload(self) -> dict[str, str]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class ProvisionOutcome:
    success: bool
    error: ClassifiedError | None = None


@dataclass(frozen=True, slots=True)
class DirectoryClientConfig:
    base_url: str = ""
    stub_mode_enabled: bool = True
    stub_delay_seconds: float = 1.5
    timeout_seconds: float = 30.0


class DirectoryClientProtocol(Protocol):
    async def search_by_mac(self, mac: str) -> list[DeviceRecord]: ...

    async def add_hsd(self, request: ProvisionRequest) -> ProvisionOutcome: ...


class DirectoryClient(DirectoryClientProtocol):
    """Directory API client with a deterministic offline stub mode.

    The active configuration is an immutable snapshot. ``configure`` swaps in
    a new snapshot, and every request reads the snapshot once when it is
    issued, so requests already in flight keep the configuration they
    started with.
    """

    def __init__(
        self,
        config: DirectoryClientConfig | None = None,
        *,
        http_client_factory: HTTPClientFactory = httpx.AsyncClient,
    ) -> None:
        self._config = config or DirectoryClientConfig()
        self._http_client_factory = http_client_factory

    @property
    def config(self) -> DirectoryClientConfig:
        return self._config

    def configure(self, **changes: Any) -> DirectoryClientConfig:
        self._config = replace(self._config, **changes)
        return self._config

    async def search_by_mac(self, mac: str) -> list[DeviceRecord]:
        config = self._config
        if config.stub_mode_enabled:
            logger.info("stub mode enabled, using simulated directory data")
            return await _stub_search_by_mac(mac, delay_seconds=config.stub_delay_seconds)

        url = f"{config.base_url}/searchbymac/{quote(mac, safe='')}"
        context = ErrorContext(source=ErrorSource.SEARCH, url=url)
        logger.info("searching directory by MAC", extra={"data": {"url": url, "mac": mac}})

        try:
            response = await self._request("GET", url, config=config)
        except (TimeoutError, httpx.TimeoutException) as exc:
            logger.error(
                "directory search timed out",
                extra={"data": {"url": url, "timeout_seconds": config.timeout_seconds}},
            )
            raise ClassifiedRequestError(classify_error(_TIMEOUT_MESSAGE, context)) from exc
        except (httpx.HTTPError, OSError) as exc:
            classified = classify_error(exc, context)
            logger.error(
                "directory search failed",
                extra={"data": {"url": url, "classified_error": classified.to_dict()}},
            )
            raise ClassifiedRequestError(classified) from exc

        logger.info(
            "directory search response received",
            extra={"data": {"status": response.status_code, "url": url}},
        )
        if not response.is_success:
            classified = create_error_from_response(response, context)
            logger.error(
                "directory search error response",
                extra={
                    "data": {
                        "status": response.status_code,
                        "proxy_failure": is_proxy_failure(response),
                        "classified_error": classified.to_dict(),
                    }
                },
            )
            raise ClassifiedRequestError(classified)

        try:
            payload = response.json()
        except ValueError as exc:
            raise ClassifiedRequestError(classify_error(exc, context)) from exc
        return parse_search_payload(payload, mac=mac)

    async def add_hsd(self, request: ProvisionRequest) -> ProvisionOutcome:
        config = self._config
        if config.stub_mode_enabled:
            return await _stub_add_hsd(request, delay_seconds=config.stub_delay_seconds)

        url = f"{config.base_url}/addhsd"
        context = ErrorContext(source=ErrorSource.PROVISION, url=url)

        try:
            response = await self._request(
                "POST", url, config=config, json_body=request.to_payload()
            )
        except (TimeoutError, httpx.TimeoutException):
            logger.error(
                "provision request timed out",
                extra={"data": {"url": url, "mac": request.mac}},
            )
            return ProvisionOutcome(success=False, error=classify_error(_TIMEOUT_MESSAGE, context))
        except (httpx.HTTPError, OSError) as exc:
            classified = classify_error(exc, context)
            logger.error(
                "provision request failed",
                extra={"data": {"mac": request.mac, "classified_error": classified.to_dict()}},
            )
            return ProvisionOutcome(success=False, error=classified)

        if not response.is_success:
            classified = create_error_from_response(response, context)
            logger.error(
                "provision error response",
                extra={
                    "data": {
                        "mac": request.mac,
                        "status": response.status_code,
                        "proxy_failure": is_proxy_failure(response),
                        "classified_error": classified.to_dict(),
                    }
                },
            )
            return ProvisionOutcome(success=False, error=classified)

        try:
            result = response.json()
        except ValueError as exc:
            return ProvisionOutcome(success=False, error=classify_error(exc, context))
        logger.info(
            "provision response received",
            extra={"data": {"mac": request.mac, "result": result}},
        )
        return ProvisionOutcome(success=result is True)

    async def _request(
        self,
        method: str,
        url: str,
        *,
        config: DirectoryClientConfig,
        json_body: dict[str, Any] | None = None,
    ) -> httpx.Response:
        async with asyncio.timeout(config.timeout_seconds):
            async with self._http_client_factory(timeout=config.timeout_seconds) as client:
                return await client.request(
                    method,
                    url,
                    json=json_body,
                    headers={"Accept": "application/json"},
                )


def create_directory_client(
    settings: AppSettings,
    *,
    http_client_factory: HTTPClientFactory = httpx.AsyncClient,
) -> DirectoryClient:
    base_url = settings.directory_base_url.strip()
    if not settings.directory_stub_mode and not base_url:
        raise ValueError(
            "PROVISIONING_API_BASE_URL is required when PROVISIONING_USE_STUB_API is not true"
        )
    return DirectoryClient(
        DirectoryClientConfig(
            base_url=base_url.rstrip("/"),
            stub_mode_enabled=settings.directory_stub_mode,
            stub_delay_seconds=settings.directory_stub_delay_seconds,
            timeout_seconds=settings.directory_timeout_seconds,
        ),
        http_client_factory=http_client_factory,
    )


def parse_search_payload(payload: Any, *, mac: str) -> list[DeviceRecord]:
    if not isinstance(payload, list):
        raise ClassifiedRequestError(
            classify_error(
                f"unexpected search response: expected a JSON array, got {type(payload).__name__}",
                ErrorContext(source=ErrorSource.SEARCH),
            )
        )

    records: list[DeviceRecord] = []
    for item in payload:
        if not isinstance(item, Mapping):
            continue
        custom_fields = item.get("customFields")
        records.append(
            DeviceRecord(
                mac=_coerce_str(item.get("mac")) or mac,
                account=_coerce_str(item.get("account")),
                configfile=_coerce_str(item.get("configfile")),
                isp=_coerce_str(item.get("isp")),
                custom_fields=dict(custom_fields) if isinstance(custom_fields, Mapping) else None,
            )
        )
    return records


async def _stub_search_by_mac(mac: str, *, delay_seconds: float) -> list[DeviceRecord]:
    await asyncio.sleep(delay_seconds)

    mac_value = mac_to_int(mac)
    if mac_value % 7 == 0 and mac_value % 21 != 0:
        raise ClassifiedRequestError(
            classify_error(
                "Simulated server error (5xx)",
                ErrorContext(source=ErrorSource.SEARCH),
            )
        )

    if mac_value % 3 == 0:
        return [
            DeviceRecord(
                mac=mac,
                account="ViaviMeter",
                configfile="existing-config",
                isp="CableOne",
                custom_fields=None,
            )
        ]
    return []


async def _stub_add_hsd(request: ProvisionRequest, *, delay_seconds: float) -> ProvisionOutcome:
    await asyncio.sleep(delay_seconds)

    context = ErrorContext(source=ErrorSource.PROVISION)
    mac_value = mac_to_int(request.mac)
    if mac_value % 11 == 0:
        return ProvisionOutcome(
            success=False,
            error=classify_error("Server error: 500", context),
        )
    if mac_value % 5 == 0:
        return ProvisionOutcome(
            success=False,
            error=classify_error("Validation failed: MAC already exists", context),
        )
    return ProvisionOutcome(success=True)


def _coerce_str(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if value is None:
        return ""
    return json.dumps(value)
