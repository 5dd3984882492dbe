"""Diagnostics for the bridge itself."""
from __future__ import annotations

from fastapi import APIRouter, Request

from ..core.bridges import BridgeManager
from ..models.forwards import ForwardList, ForwardRef

router = APIRouter(tags=["bridge"])


@router.get("/healthz")
def healthcheck() -> dict[str, str]:
    """Basic health endpoint for readiness probes."""
    return {"status": "ok"}


@router.get("/forwards", response_model=ForwardList)
async def list_forwards(request: Request) -> ForwardList:
    """Return every port that has been bridged and the state of its listener."""
    bridges: BridgeManager = request.app.state.bridges
    return ForwardList(
        remote_host=bridges.remote_host,
        forwards=[
            ForwardRef(
                port=status.port,
                local_addr=status.local_addr,
                remote_addr=status.remote_addr,
                state=status.state,
                error=status.error,
            )
            for status in bridges.forwards()
        ],
    )
