"""Catch-all reverse proxy to the Docker daemon."""
from __future__ import annotations

import logging

import httpx
from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.background import BackgroundTask

from ..core.http_client import DaemonClient, DaemonUnavailableError
from ..core.hook import RequestInterceptor

log = logging.getLogger(__name__)

router = APIRouter(tags=["proxy"])

_HOP_BY_HOP = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "proxy-connection",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)
# Host is set from the daemon URL and Content-Length from the (possibly rewritten) body.
_DROPPED_REQUEST_HEADERS = _HOP_BY_HOP | {"host", "content-length"}

_METHODS = ["GET", "HEAD", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"]


def _upstream_target(request: Request) -> str:
    raw_path = request.scope.get("raw_path")
    path = raw_path.decode("latin-1") if raw_path else request.url.path
    query = request.url.query
    return f"{path}?{query}" if query else path


def _forward_headers(request: Request) -> list[tuple[str, str]]:
    return [
        (name, value)
        for name, value in request.headers.items()
        if name.lower() not in _DROPPED_REQUEST_HEADERS
    ]


@router.api_route("/{path:path}", methods=_METHODS, include_in_schema=False)
async def forward(request: Request, path: str) -> Response:
    daemon: DaemonClient = request.app.state.daemon
    interceptor: RequestInterceptor = request.app.state.interceptor

    # attach/exec hijack the connection; relaying raw streams is not supported.
    upgrade = request.headers.get("upgrade")
    if upgrade:
        log.warning("Refusing %s %s: Upgrade: %s", request.method, request.url.path, upgrade)
        return JSONResponse(
            status_code=status.HTTP_501_NOT_IMPLEMENTED,
            content={"message": f"dockbridge does not relay upgraded connections ({upgrade})"},
        )

    body = await request.body()
    body = interceptor.intercept(request.method, request.url.path, body)

    try:
        upstream = await daemon.send(
            request.method,
            _upstream_target(request),
            headers=_forward_headers(request),
            content=body,
        )
    except DaemonUnavailableError as exc:
        log.error("%s", exc)
        return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content={"message": str(exc)})
    except httpx.HTTPError as exc:
        log.error("Forwarding %s %s failed: %r", request.method, request.url.path, exc)
        return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content={"message": repr(exc)})

    response = StreamingResponse(
        upstream.aiter_raw(),
        status_code=upstream.status_code,
        background=BackgroundTask(upstream.aclose),
    )
    # Raw pairs keep repeated headers such as Set-Cookie.
    response.raw_headers.extend(
        (name.lower(), value)
        for name, value in upstream.headers.raw
        if name.decode("latin-1").lower() not in _HOP_BY_HOP
    )
    return response
