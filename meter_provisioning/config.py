"""Application configuration loading."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, cast

import yaml

from meter_provisioning.mac import MAX_SEQUENCE_LENGTH

DEFAULT_RUNTIME_CONFIG_PATH = "runtime-config.yaml"
DEFAULT_PROXY_PATH_PREFIX = "/api/ldap"
DEFAULT_DIRECTORY_BASE_URL = f"http://127.0.0.1:8080{DEFAULT_PROXY_PATH_PREFIX}"


@dataclass(frozen=True, slots=True)
class AppSettings:
    app_env: str = "development"
    log_level: str = "INFO"
    server_log_url: str = ""
    directory_base_url: str = DEFAULT_DIRECTORY_BASE_URL
    directory_stub_mode: bool = True
    directory_stub_delay_seconds: float = 1.5
    directory_timeout_seconds: float = 30.0
    proxy_path_prefix: str = DEFAULT_PROXY_PATH_PREFIX
    proxy_target_url: str = "http://127.0.0.1:8000"
    proxy_timeout_seconds: float = 30.0
    approved_ouis_path: str = "config/approved-ouis.json"
    provision_defaults_path: str = "config/provision-defaults.json"
    workflow_address_count: int = 4
    runtime_config_path: str = DEFAULT_RUNTIME_CONFIG_PATH

    @classmethod
    def from_yaml(
        cls, runtime_config_path: str = DEFAULT_RUNTIME_CONFIG_PATH
    ) -> AppSettings:
        normalized_path = runtime_config_path.strip() or DEFAULT_RUNTIME_CONFIG_PATH
        config = _load_runtime_config(normalized_path)

        app_cfg = cast(dict[str, Any], config.get("app", {}))
        directory_cfg = cast(dict[str, Any], config.get("directory", {}))
        proxy_cfg = cast(dict[str, Any], config.get("proxy", {}))
        reference_cfg = cast(dict[str, Any], config.get("reference", {}))
        workflow_cfg = cast(dict[str, Any], config.get("workflow", {}))

        directory_base_url = os.environ.get("PROVISIONING_API_BASE_URL") or str(
            directory_cfg.get("base_url", DEFAULT_DIRECTORY_BASE_URL)
        )
        stub_mode_override = os.environ.get("PROVISIONING_USE_STUB_API")
        if stub_mode_override is not None:
            directory_stub_mode = stub_mode_override.strip().lower() == "true"
        else:
            directory_stub_mode = bool(directory_cfg.get("stub_mode", True))
        proxy_target_url = os.environ.get("LDAP_API_URL") or str(
            proxy_cfg.get("target_url", "http://127.0.0.1:8000")
        )

        return cls(
            app_env=str(app_cfg.get("env", "development")).lower(),
            log_level=str(app_cfg.get("log_level", "INFO")).upper(),
            server_log_url=str(app_cfg.get("server_log_url", "")).strip(),
            directory_base_url=directory_base_url.strip().rstrip("/"),
            directory_stub_mode=directory_stub_mode,
            directory_stub_delay_seconds=max(
                0.0, float(directory_cfg.get("stub_delay_seconds", 1.5))
            ),
            directory_timeout_seconds=_positive_seconds(
                directory_cfg.get("timeout_seconds", 30.0),
                setting="directory.timeout_seconds",
            ),
            proxy_path_prefix=_normalize_path_prefix(
                str(proxy_cfg.get("path_prefix", DEFAULT_PROXY_PATH_PREFIX))
            ),
            proxy_target_url=proxy_target_url.strip().rstrip("/"),
            proxy_timeout_seconds=_positive_seconds(
                proxy_cfg.get("timeout_seconds", 30.0),
                setting="proxy.timeout_seconds",
            ),
            approved_ouis_path=str(
                reference_cfg.get("approved_ouis_path", "config/approved-ouis.json")
            ),
            provision_defaults_path=str(
                reference_cfg.get("provision_defaults_path", "config/provision-defaults.json")
            ),
            workflow_address_count=_resolve_address_count(workflow_cfg),
            runtime_config_path=normalized_path,
        )

    @classmethod
    def from_env(
        cls, runtime_config_path: str = DEFAULT_RUNTIME_CONFIG_PATH
    ) -> AppSettings:
        return cls.from_yaml(
            runtime_config_path=os.environ.get("RUNTIME_CONFIG_PATH", runtime_config_path)
        )


def _load_runtime_config(runtime_config_path: str) -> dict[str, Any]:
    path = Path(runtime_config_path)
    if not path.exists() or not path.is_file():
        return {}

    parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
    if isinstance(parsed, dict):
        return parsed
    return {}


def _normalize_path_prefix(prefix: str) -> str:
    normalized = prefix.strip().rstrip("/")
    if not normalized.startswith("/"):
        raise ValueError(
            f"proxy.path_prefix must start with '/' in runtime config: {prefix!r}"
        )
    return normalized


def _positive_seconds(value: Any, *, setting: str) -> float:
    seconds = float(value)
    if seconds <= 0:
        raise ValueError(f"{setting} must be positive in runtime config (received {seconds})")
    return seconds


def _resolve_address_count(workflow_cfg: dict[str, Any]) -> int:
    address_count = int(workflow_cfg.get("address_count", 4))
    if address_count < 1 or address_count > MAX_SEQUENCE_LENGTH:
        raise ValueError(
            "unsupported workflow.address_count in runtime config: "
            f"{address_count}; expected 1..{MAX_SEQUENCE_LENGTH}"
        )
    return address_count


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return AppSettings.from_env()
