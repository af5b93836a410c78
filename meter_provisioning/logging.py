"""Structured logging setup and the fire-and-forget client log sink."""

from __future__ import annotations

import atexit
import json
import logging
import queue
import time
from collections.abc import Callable
from logging.handlers import QueueHandler, QueueListener
from typing import Any

import httpx

from meter_provisioning.config import AppSettings

HTTPClientFactory = Callable[..., httpx.Client]

CLIENT_LOG_LOGGER = "meter_provisioning.client_log"

_SINK_LEVELS = {
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warn",
    logging.ERROR: "error",
    logging.CRITICAL: "error",
}


def _utc_timestamp() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        base: dict[str, Any] = {
            "timestamp": _utc_timestamp(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        data = getattr(record, "data", None)
        if data is not None:
            base["data"] = data
        if record.exc_info:
            base["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(base, ensure_ascii=True, default=str)


class ServerLogHandler(logging.Handler):
    """Forward records to the service ``/api/log`` endpoint.

    Delivery is best effort: a sink that is down or slow must never change
    the outcome of the operation being logged, so transport failures are
    dropped here instead of going through ``handleError``.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout_seconds: float = 2.0,
        http_client_factory: HTTPClientFactory = httpx.Client,
    ) -> None:
        super().__init__()
        self._url = url
        self._timeout_seconds = timeout_seconds
        self._http_client_factory = http_client_factory

    def emit(self, record: logging.LogRecord) -> None:
        payload: dict[str, Any] = {
            "level": _SINK_LEVELS.get(record.levelno, "info"),
            "message": record.getMessage(),
        }
        data = getattr(record, "data", None)
        if data is not None:
            payload["data"] = data

        try:
            body = json.dumps(payload, default=str)
            with self._http_client_factory(timeout=self._timeout_seconds) as client:
                client.post(
                    self._url,
                    content=body,
                    headers={"Content-Type": "application/json"},
                )
        except (httpx.HTTPError, OSError, TypeError, ValueError):
            pass


_sink_listener: QueueListener | None = None


def start_server_log_sink(
    url: str,
    *,
    http_client_factory: HTTPClientFactory = httpx.Client,
) -> tuple[QueueHandler, QueueListener]:
    """Return a queue-backed handler whose records a background thread delivers.

    The caller owns the listener and must ``stop()`` it to flush pending
    records.
    """
    records: queue.SimpleQueue[logging.LogRecord] = queue.SimpleQueue()
    handler = QueueHandler(records)
    # Records received from /api/log never go back out to the sink.
    handler.addFilter(lambda record: record.name != CLIENT_LOG_LOGGER)
    listener = QueueListener(
        records, ServerLogHandler(url, http_client_factory=http_client_factory)
    )
    listener.start()
    return handler, listener


def stop_server_log_sink() -> None:
    global _sink_listener
    if _sink_listener is not None:
        _sink_listener.stop()
        _sink_listener = None


def configure_logging(settings: AppSettings) -> None:
    global _sink_listener
    root = logging.getLogger()
    root.setLevel(settings.log_level)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    handlers: list[logging.Handler] = [handler]
    stop_server_log_sink()
    if settings.server_log_url:
        sink, _sink_listener = start_server_log_sink(settings.server_log_url)
        handlers.append(sink)

    # Sink requests are themselves logged by httpx; keep them out of the sink.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    root.handlers = handlers


atexit.register(stop_server_log_sink)
