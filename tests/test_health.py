from __future__ import annotations

import json
from dataclasses import replace
from pathlib import Path
from typing import Any

from fastapi.testclient import TestClient

from meter_provisioning.config import AppSettings
from meter_provisioning.main import create_app


def test_healthz_endpoint() -> None:
    app = create_app(settings=_settings())
    with TestClient(app) as client:
        response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_root_endpoint() -> None:
    app = create_app(settings=_settings())
    with TestClient(app) as client:
        response = client.get("/")

    assert response.json() == {"service": "meter-provisioning", "status": "ok"}


def test_reference_documents_are_served(tmp_path: Path) -> None:
    ouis_path = tmp_path / "approved-ouis.json"
    ouis_path.write_text(json.dumps({"approved_ouis": ["a1b2c3", "001A2B"]}), encoding="utf-8")
    defaults_path = tmp_path / "provision-defaults.json"
    defaults_path.write_text(
        json.dumps({"account": "acct", "isp": "isp", "configfiles": ["cfg0", "cfg1"]}),
        encoding="utf-8",
    )
    app = create_app(
        settings=_settings(
            approved_ouis_path=str(ouis_path),
            provision_defaults_path=str(defaults_path),
        )
    )

    with TestClient(app) as client:
        ouis = client.get("/config/approved-ouis.json")
        defaults = client.get("/config/provision-defaults.json")

    assert ouis.json() == {"approved_ouis": ["001A2B", "A1B2C3"]}
    assert defaults.json() == {"account": "acct", "isp": "isp", "configfiles": ["cfg0", "cfg1"]}


def test_missing_reference_document_is_server_error(tmp_path: Path) -> None:
    app = create_app(settings=_settings(approved_ouis_path=str(tmp_path / "missing.json")))

    with TestClient(app) as client:
        response = client.get("/config/approved-ouis.json")

    assert response.status_code == 500
    assert "failed to read approved-ouis config" in response.json()["detail"]


def _settings(**overrides: Any) -> AppSettings:
    return replace(AppSettings(app_env="test"), **overrides)
