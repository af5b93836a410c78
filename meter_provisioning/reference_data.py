"""Approved OUI allow-list and provisioning defaults sources."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import yaml

from meter_provisioning.config import AppSettings

logger = logging.getLogger(__name__)


class ReferenceDataError(Exception):
    """Raised when a reference config document is missing or malformed."""

    error_code = "reference_data_error"


@dataclass(frozen=True, slots=True)
class ProvisioningDefaults:
    account: str
    isp: str
    configfiles: tuple[str, ...]

    def configfile_for(self, index: int) -> str:
        if index < 0 or index >= len(self.configfiles):
            raise ReferenceDataError(
                f"provision-defaults config has no configfile for address index {index} "
                f"({len(self.configfiles)} configured)"
            )
        return self.configfiles[index]

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"account": self.account, "isp": self.isp}
        if len(self.configfiles) == 1:
            payload["configfile"] = self.configfiles[0]
        else:
            payload["configfiles"] = list(self.configfiles)
        return payload


class OuiAllowList(Protocol):
    async def is_approved(self, oui: str) -> bool: ...


class ProvisioningDefaultsSource(Protocol):
    async def load_defaults(self) -> ProvisioningDefaults: ...


class FileOuiAllowList(OuiAllowList):
    """Allow-list read from disk once; a failed read is retried on the next call."""

    def __init__(self, path: str) -> None:
        self._path = path
        self._approved: frozenset[str] | None = None

    async def is_approved(self, oui: str) -> bool:
        if self._approved is None:
            # An unreadable allow-list approves nothing.
            try:
                self._approved = await asyncio.to_thread(load_approved_ouis, self._path)
            except ReferenceDataError as exc:
                logger.warning(
                    "failed to load approved OUI list",
                    extra={"data": {"path": self._path, "error": str(exc)}},
                )
                return False
        return oui.upper() in self._approved


class FileProvisioningDefaultsSource(ProvisioningDefaultsSource):
    def __init__(self, path: str) -> None:
        self._path = path

    async def load_defaults(self) -> ProvisioningDefaults:
        return await asyncio.to_thread(load_provisioning_defaults, self._path)


def create_oui_allow_list(settings: AppSettings) -> OuiAllowList:
    return FileOuiAllowList(settings.approved_ouis_path)


def create_defaults_source(settings: AppSettings) -> ProvisioningDefaultsSource:
    return FileProvisioningDefaultsSource(settings.provision_defaults_path)


def load_approved_ouis(path: str) -> frozenset[str]:
    document = _read_document(path, label="approved-ouis")
    raw_ouis = document.get("approved_ouis")
    if not isinstance(raw_ouis, list):
        raise ReferenceDataError(f"approved-ouis config must list approved_ouis: {path}")

    approved: set[str] = set()
    for item in raw_ouis:
        if not isinstance(item, str):
            continue
        normalized = item.strip().upper()
        if normalized:
            approved.add(normalized)
    return frozenset(approved)


def load_provisioning_defaults(path: str) -> ProvisioningDefaults:
    document = _read_document(path, label="provision-defaults")
    return parse_provisioning_defaults(document)


def parse_provisioning_defaults(document: Mapping[str, Any]) -> ProvisioningDefaults:
    account = _required_str(document, "account")
    isp = _required_str(document, "isp")

    raw_configfiles = document.get("configfiles")
    configfiles: Sequence[Any]
    if raw_configfiles is not None:
        if not isinstance(raw_configfiles, list) or not raw_configfiles:
            raise ReferenceDataError(
                "provision-defaults config field 'configfiles' must be a non-empty list"
            )
        configfiles = raw_configfiles
    else:
        configfiles = [_required_str(document, "configfile")]

    normalized: list[str] = []
    for item in configfiles:
        if not isinstance(item, str) or not item.strip():
            raise ReferenceDataError(
                "provision-defaults config entries in 'configfiles' must be non-empty strings"
            )
        normalized.append(item.strip())
    return ProvisioningDefaults(account=account, isp=isp, configfiles=tuple(normalized))


def _read_document(path: str, *, label: str) -> Mapping[str, Any]:
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ReferenceDataError(f"failed to read {label} config: {path}: {exc}") from exc

    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise ReferenceDataError(f"{label} config is not valid JSON/YAML: {path}") from exc

    if not isinstance(parsed, Mapping):
        raise ReferenceDataError(f"{label} config root must be an object: {path}")
    return parsed


def _required_str(document: Mapping[str, Any], key: str) -> str:
    value = document.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ReferenceDataError(f"provision-defaults config field '{key}' must be a string")
    return value.strip()
