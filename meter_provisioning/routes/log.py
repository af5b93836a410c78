"""Receiver for client log records posted by ServerLogHandler and browsers."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Request
from pydantic import BaseModel, ValidationError

from meter_provisioning.logging import CLIENT_LOG_LOGGER

router = APIRouter(tags=["logging"])
client_logger = logging.getLogger(CLIENT_LOG_LOGGER)

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class LogPayload(BaseModel):
    level: str | None = None
    message: str | None = None
    data: Any = None


@router.post("/api/log", name="client_log")
async def receive_client_log(request: Request) -> dict[str, bool]:
    raw_body = await request.body()
    try:
        payload = LogPayload.model_validate_json(raw_body)
    except ValidationError:
        client_logger.info("[LOG] %s", raw_body.decode("utf-8", errors="replace"))
        return {"success": True}

    level = (payload.level or "info").lower()
    client_logger.log(_LOG_LEVELS.get(level, logging.INFO), "%s", format_client_log(payload))
    return {"success": True}


def format_client_log(payload: LogPayload, *, now: datetime | None = None) -> str:
    timestamp = (now or datetime.now(UTC)).isoformat(timespec="milliseconds")
    level = (payload.level or "info").upper()
    data = json.dumps(payload.data, default=str) if payload.data else ""
    return f"[{timestamp}] [{level}] {payload.message or ''} {data}"
