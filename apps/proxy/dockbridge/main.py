"""dockbridge FastAPI application factory."""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx
from fastapi import FastAPI

from . import __version__
from .api.forwards import router as forwards_router
from .api.proxy import router as proxy_router
from .config import BridgeSettings
from .core.bridges import BridgeManager
from .core.hook import RequestInterceptor
from .core.http_client import create_daemon_client


def create_app(
    settings: BridgeSettings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    bridges: BridgeManager | None = None,
) -> FastAPI:
    """Build the proxy app; ``transport`` replaces the network path to the daemon."""

    settings = settings or BridgeSettings.from_env()
    if bridges is None:
        bridges = BridgeManager(
            settings.target_ip,
            listen_host=settings.listen_host,
            connect_timeout=settings.connect_timeout,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if isinstance(bridges, BridgeManager):
            bridges.bind_loop(asyncio.get_running_loop())
        async with create_daemon_client(base_url=settings.target_url, transport=transport) as daemon:
            app.state.daemon = daemon
            try:
                yield
            finally:
                if isinstance(bridges, BridgeManager):
                    await bridges.aclose()

    app = FastAPI(title="dockbridge", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.bridges = bridges
    app.state.interceptor = RequestInterceptor(settings.base_path, bridges)

    app.include_router(forwards_router, prefix="/_bridge")
    # Registered last so it only sees what the bridge routes do not claim.
    app.include_router(proxy_router)
    return app
