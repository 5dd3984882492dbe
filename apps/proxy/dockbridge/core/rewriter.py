"""Container-create payload rewriting."""
from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any

from .paths import translate_bind, translate_env

log = logging.getLogger(__name__)


@dataclass(slots=True)
class RewriteResult:
    """Body to forward plus the host ports declared by the payload."""

    body: bytes
    ports: list[str] = field(default_factory=list)
    modified: bool = False


def rewrite(raw: bytes | None, *, base_path: str) -> RewriteResult:
    """Translate Windows paths in ``raw`` and collect published host ports.

    Anything that is not a JSON object is passed through untouched. The
    original bytes are returned unless at least one entry was rewritten.
    """

    if not raw:
        return RewriteResult(body=raw or b"")

    try:
        document = json.loads(raw, parse_constant=_reject_constant, parse_float=_finite_float)
    except (ValueError, RecursionError):
        log.debug("Body is not JSON, forwarding unchanged")
        return RewriteResult(body=raw)
    if not isinstance(document, dict):
        return RewriteResult(body=raw)

    ports: list[str] = []
    modified = False

    host_config = document.get("HostConfig")
    if isinstance(host_config, dict):
        modified |= _rewrite_binds(host_config.get("Binds"), base_path)
        ports.extend(_iter_host_ports(host_config.get("PortBindings")))

    modified |= _rewrite_env(document.get("Env"), base_path)

    if not modified:
        return RewriteResult(body=raw, ports=ports)

    body = json.dumps(
        document, ensure_ascii=False, allow_nan=False, separators=(",", ":")
    ).encode("utf-8")
    log.info("[OK] Payload modified for VM compatibility.")
    return RewriteResult(body=body, ports=ports, modified=True)


def _rewrite_binds(binds: Any, base_path: str) -> bool:
    if not isinstance(binds, list):
        return False
    changed = False
    for index, entry in enumerate(binds):
        if not isinstance(entry, str):
            continue
        new_entry = translate_bind(entry, base_path)
        if new_entry is None:
            continue
        binds[index] = new_entry
        log.info("[PATH] Rewrote Bind: %s -> %s", entry, new_entry)
        changed = True
    return changed


def _rewrite_env(env: Any, base_path: str) -> bool:
    if not isinstance(env, list):
        return False
    changed = False
    for index, entry in enumerate(env):
        if not isinstance(entry, str):
            continue
        new_entry = translate_env(entry, base_path)
        if new_entry is None:
            continue
        env[index] = new_entry
        log.info("[ENV]  Rewrote: %s -> %s", entry, new_entry)
        changed = True
    return changed


def _iter_host_ports(port_bindings: Any):
    if not isinstance(port_bindings, dict):
        return
    for bindings in port_bindings.values():
        if not isinstance(bindings, list):
            continue
        for binding in bindings:
            if isinstance(binding, dict) and isinstance(binding.get("HostPort"), str):
                yield binding["HostPort"]


def _reject_constant(name: str) -> float:
    raise ValueError(f"{name} is not valid JSON")


def _finite_float(text: str) -> float:
    value = float(text)
    if math.isinf(value):
        raise ValueError(f"number {text} does not fit a double")
    return value
