"""Same-origin forwarding of directory API requests to the internal backend."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping

import httpx
from fastapi.responses import JSONResponse, Response

from meter_provisioning.config import AppSettings
from meter_provisioning.errors import PROXY_ERROR_LABEL

logger = logging.getLogger(__name__)

HTTPClientFactory = Callable[..., httpx.AsyncClient]

BUFFERED_METHODS = frozenset({"POST", "PUT"})
DEFAULT_CONTENT_TYPE = "application/json"

_EXCLUDED_REQUEST_HEADERS = frozenset(
    {
        "accept-encoding",
        "connection",
        "content-length",
        "host",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)


class EdgeProxy:
    def __init__(
        self,
        *,
        target_url: str,
        timeout_seconds: float = 30.0,
        http_client_factory: HTTPClientFactory = httpx.AsyncClient,
    ) -> None:
        self._target_url = target_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._http_client_factory = http_client_factory

    @property
    def target_url(self) -> str:
        return self._target_url

    def target_for(self, path: str, query: str = "") -> str:
        target = f"{self._target_url}{path}"
        if query:
            target = f"{target}?{query}"
        return target

    async def forward(
        self,
        *,
        method: str,
        path: str,
        query: str = "",
        headers: Mapping[str, str] | None = None,
        body: bytes | None = None,
    ) -> Response:
        """Forward one request and mirror the backend answer.

        Any failure to reach the backend becomes a 502 carrying the
        ``{"error": "Proxy error", ...}`` envelope, the only response shape
        this layer fabricates.
        """
        target = self.target_for(path, query)
        logger.info(
            "proxy request",
            extra={"data": {"method": method, "path": path, "target": target}},
        )

        try:
            async with self._http_client_factory(timeout=self._timeout_seconds) as client:
                upstream = await client.request(
                    method,
                    target,
                    headers=_forward_headers(headers or {}),
                    content=body,
                )
        except (httpx.HTTPError, httpx.InvalidURL, OSError) as exc:
            message = str(exc) or type(exc).__name__
            logger.error(
                "proxy forwarding failed",
                extra={"data": {"method": method, "target": target, "error": message}},
            )
            return JSONResponse(
                status_code=502,
                content={"error": PROXY_ERROR_LABEL, "message": message, "target": target},
            )

        logger.info(
            "proxy response",
            extra={
                "data": {
                    "status": upstream.status_code,
                    "bytes": len(upstream.content),
                    "target": target,
                }
            },
        )
        return Response(
            content=upstream.content,
            status_code=upstream.status_code,
            headers={
                "Content-Type": upstream.headers.get("content-type") or DEFAULT_CONTENT_TYPE,
                "Access-Control-Allow-Origin": "*",
            },
        )


def create_edge_proxy(
    settings: AppSettings,
    *,
    http_client_factory: HTTPClientFactory = httpx.AsyncClient,
) -> EdgeProxy:
    target_url = settings.proxy_target_url.strip()
    if not target_url:
        raise ValueError("LDAP_API_URL is required to run the edge proxy")
    return EdgeProxy(
        target_url=target_url,
        timeout_seconds=settings.proxy_timeout_seconds,
        http_client_factory=http_client_factory,
    )


def _forward_headers(headers: Mapping[str, str]) -> dict[str, str]:
    forwarded = {
        name: value
        for name, value in headers.items()
        if name.lower() not in _EXCLUDED_REQUEST_HEADERS
    }
    lowered = {name.lower() for name in forwarded}
    if "content-type" not in lowered:
        forwarded["Content-Type"] = DEFAULT_CONTENT_TYPE
    if "accept" not in lowered:
        forwarded["Accept"] = DEFAULT_CONTENT_TYPE
    return forwarded
