"""Common FastAPI dependencies."""

from __future__ import annotations

from typing import cast

from fastapi import Request

from meter_provisioning.config import AppSettings
from meter_provisioning.proxy import EdgeProxy


def get_app_settings(request: Request) -> AppSettings:
    return cast(AppSettings, request.app.state.settings)


def get_edge_proxy(request: Request) -> EdgeProxy:
    return cast(EdgeProxy, request.app.state.edge_proxy)
