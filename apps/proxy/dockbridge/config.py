"""Runtime settings for the bridge proxy."""
from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_BASE_PATH = "/mnt/hgfs/docker/volumes/"


@dataclass(slots=True)
class BridgeSettings:
    """Where to listen, which daemon to reach and how to map Windows paths."""

    target_ip: str = "192.168.137.25"
    vm_port: int = 2375
    local_port: int = 2375
    base_path: str = DEFAULT_BASE_PATH
    listen_host: str = "127.0.0.1"
    connect_timeout: float = 5.0

    @classmethod
    def from_env(cls) -> "BridgeSettings":
        defaults = cls()
        return cls(
            target_ip=os.getenv("DOCKBRIDGE_IP", defaults.target_ip),
            vm_port=_env_int("DOCKBRIDGE_VM_PORT", default=defaults.vm_port),
            local_port=_env_int("DOCKBRIDGE_LOCAL_PORT", default=defaults.local_port),
            base_path=os.getenv("DOCKBRIDGE_BASE", defaults.base_path),
            listen_host=os.getenv("DOCKBRIDGE_LISTEN_HOST", defaults.listen_host),
            connect_timeout=float(
                os.getenv("DOCKBRIDGE_CONNECT_TIMEOUT", str(defaults.connect_timeout))
            ),
        )

    @property
    def target_addr(self) -> str:
        return f"{self.target_ip}:{self.vm_port}"

    @property
    def target_url(self) -> str:
        return f"http://{self.target_addr}"

    @property
    def local_addr(self) -> str:
        return f"{self.listen_host}:{self.local_port}"


def _env_int(name: str, *, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)
