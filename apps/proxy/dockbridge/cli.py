"""Command-line entry point: ``dockbridge --ip 192.168.137.25``."""
from __future__ import annotations

import argparse
import logging
from typing import Sequence

import uvicorn

from .config import BridgeSettings
from .main import create_app

log = logging.getLogger("dockbridge")


def parse_args(argv: Sequence[str] | None = None) -> tuple[BridgeSettings, str]:
    defaults = BridgeSettings.from_env()
    parser = argparse.ArgumentParser(
        description="Proxy the Docker API to a VM, mapping Windows paths and bridging published ports"
    )
    parser.add_argument("--ip", default=defaults.target_ip, help="The IP of the remote VM")
    parser.add_argument("--vm-port", type=int, default=defaults.vm_port, help="The Docker port on the VM")
    parser.add_argument(
        "--local-port",
        type=int,
        default=defaults.local_port,
        help="The port to listen on locally (127.0.0.1)",
    )
    parser.add_argument("--base", default=defaults.base_path, help="Prefix for paths in the VM")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
    )
    args = parser.parse_args(argv)

    settings = BridgeSettings(
        target_ip=args.ip,
        vm_port=args.vm_port,
        local_port=args.local_port,
        base_path=args.base,
        listen_host=defaults.listen_host,
        connect_timeout=defaults.connect_timeout,
    )
    return settings, args.log_level


def main(argv: Sequence[str] | None = None) -> None:
    settings, log_level = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, log_level),
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )

    log.info("-------------------------------------------------------")
    log.info("DOCKER BRIDGE PROXY: tcp://%s -> tcp://%s", settings.local_addr, settings.target_addr)
    log.info("Path Mapping: Windows -> %s{DRIVE}/", settings.base_path)
    log.info("-------------------------------------------------------")

    app = create_app(settings)
    uvicorn.run(
        app,
        host=settings.listen_host,
        port=settings.local_port,
        log_config=None,
        access_log=False,
    )


if __name__ == "__main__":
    main()
