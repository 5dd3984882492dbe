"""Request interception applied before forwarding to the daemon."""
from __future__ import annotations

import logging
from typing import Protocol

from .rewriter import rewrite

log = logging.getLogger(__name__)

CREATE_ROUTE = "/containers/create"


class BridgeRequester(Protocol):
    def request_bridge(self, port: str, remote_host: str | None = None) -> bool: ...


def should_intercept(method: str, path: str) -> bool:
    """Only container-create calls carry binds, env and port bindings we rewrite."""
    return method.upper() == "POST" and CREATE_ROUTE in path


class RequestInterceptor:
    """Rewrites container-create bodies and asks for bridges on their host ports."""

    def __init__(self, base_path: str, bridges: BridgeRequester | None = None) -> None:
        self.base_path = base_path
        self.bridges = bridges

    def intercept(self, method: str, path: str, body: bytes) -> bytes:
        """Return the body to forward for ``method path``."""
        if not should_intercept(method, path):
            return body

        result = rewrite(body, base_path=self.base_path)
        if self.bridges is not None:
            for port in result.ports:
                self.bridges.request_bridge(port)
        elif result.ports:
            log.debug("No bridge manager configured, ignoring ports %s", result.ports)
        return result.body
