from __future__ import annotations

from collections.abc import Generator

import pytest

from meter_provisioning.config import get_settings

_SETTINGS_ENV_VARS = (
    "RUNTIME_CONFIG_PATH",
    "PROVISIONING_API_BASE_URL",
    "PROVISIONING_USE_STUB_API",
    "LDAP_API_URL",
)


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch: pytest.MonkeyPatch) -> Generator[None]:
    for name in _SETTINGS_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
