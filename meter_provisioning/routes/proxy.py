"""Same-origin route that forwards directory API calls to the backend."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response

from meter_provisioning.dependencies import get_edge_proxy
from meter_provisioning.proxy import BUFFERED_METHODS, EdgeProxy

EdgeProxyDep = Annotated[EdgeProxy, Depends(get_edge_proxy)]

PROXIED_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"]


def create_proxy_router(path_prefix: str) -> APIRouter:
    router = APIRouter(prefix=path_prefix, tags=["proxy"])

    async def forward(request: Request, edge_proxy: EdgeProxyDep) -> Response:
        body = await request.body() if request.method in BUFFERED_METHODS else None
        return await edge_proxy.forward(
            method=request.method,
            path=_forwarded_path(request, path_prefix),
            query=request.url.query,
            headers=request.headers,
            body=body,
        )

    # The bare prefix is forwarded as the backend root instead of redirecting.
    for route_path in ("", "/{path:path}"):
        router.add_api_route(
            route_path,
            forward,
            methods=PROXIED_METHODS,
            name="edge_proxy",
            include_in_schema=False,
        )
    return router


def _forwarded_path(request: Request, path_prefix: str) -> str:
    # Use the undecoded path so escapes such as %3A reach the backend untouched.
    raw_path = request.scope.get("raw_path")
    if isinstance(raw_path, bytes):
        full_path = raw_path.decode("latin-1")
        root_path = request.scope.get("root_path", "")
        if root_path and full_path.startswith(root_path):
            full_path = full_path[len(root_path) :]
        if full_path.startswith(path_prefix):
            return full_path[len(path_prefix) :] or "/"
    return f"/{request.path_params.get('path', '')}"
