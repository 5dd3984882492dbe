"""TCP bridges from local ports to the same ports on the VM.

Every host port published by a container-create request gets one loopback
listener for the lifetime of the process. The registry only ever grows: a
port whose local bind failed is not retried.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from dataclasses import dataclass

log = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 5.0
_CHUNK_SIZE = 65536

PENDING = "pending"
LISTENING = "listening"
FAILED = "failed"


class ForwardRegistry:
    """Set of port tokens that already have a bridge, guarded by one lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ports: set[str] = set()

    def claim(self, port: str) -> bool:
        """Add ``port`` and return True, or return False if it was already known."""
        with self._lock:
            if port in self._ports:
                return False
            self._ports.add(port)
            return True

    def snapshot(self) -> list[str]:
        with self._lock:
            return sorted(self._ports, key=lambda port: (len(port), port))

    def __contains__(self, port: object) -> bool:
        with self._lock:
            return port in self._ports

    def __len__(self) -> int:
        with self._lock:
            return len(self._ports)


@dataclass(slots=True)
class ForwardStatus:
    port: str
    local_addr: str
    remote_addr: str
    state: str
    error: str | None = None


def parse_port(token: str) -> int:
    """Return the TCP port number named by ``token`` or raise ``ValueError``."""
    if not (token.isascii() and token.isdigit()):
        raise ValueError(f"invalid port {token!r}")
    number = int(token)
    if not 0 < number < 65536:
        raise ValueError(f"port {token!r} out of range")
    return number


async def _pump(src: asyncio.StreamReader, dst: asyncio.StreamWriter) -> None:
    try:
        while True:
            chunk = await src.read(_CHUNK_SIZE)
            if not chunk:
                break
            dst.write(chunk)
            await dst.drain()
    except ConnectionError:
        pass


async def _close(writer: asyncio.StreamWriter) -> None:
    writer.close()
    with contextlib.suppress(OSError):
        await writer.wait_closed()


class BridgeSession:
    """Relay one accepted connection to ``remote_host:port``."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        *,
        remote_host: str,
        port: int,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
    ) -> None:
        self.reader = reader
        self.writer = writer
        self.remote_host = remote_host
        self.port = port
        self.connect_timeout = connect_timeout

    async def run(self) -> None:
        try:
            remote_reader, remote_writer = await asyncio.wait_for(
                asyncio.open_connection(self.remote_host, self.port),
                timeout=self.connect_timeout,
            )
        except (OSError, asyncio.TimeoutError) as exc:
            log.warning(
                "[TUNNEL] Cannot reach %s:%s: %s",
                self.remote_host,
                self.port,
                str(exc) or "timed out",
            )
            await _close(self.writer)
            return
        except asyncio.CancelledError:
            self.writer.close()
            raise

        pumps = [
            asyncio.create_task(_pump(self.reader, remote_writer)),
            asyncio.create_task(_pump(remote_reader, self.writer)),
        ]
        try:
            # Either side finishing ends the session.
            await asyncio.wait(pumps, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for pump in pumps:
                pump.cancel()
            await _close(remote_writer)
            await _close(self.writer)
            await asyncio.gather(*pumps, return_exceptions=True)


class BridgeListener:
    """Loopback listener for one port; each connection gets a ``BridgeSession``."""

    def __init__(
        self,
        port: str,
        remote_host: str,
        *,
        listen_host: str = "127.0.0.1",
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
    ) -> None:
        self.port = port
        self.remote_host = remote_host
        self.listen_host = listen_host
        self.connect_timeout = connect_timeout
        self.state = PENDING
        self.error: str | None = None
        self.started = asyncio.Event()
        self._stopping = asyncio.Event()
        self._sessions: set[asyncio.Task] = set()

    @property
    def local_addr(self) -> str:
        return f"{self.listen_host}:{self.port}"

    @property
    def remote_addr(self) -> str:
        return f"{self.remote_host}:{self.port}"

    async def serve(self) -> None:
        try:
            number = parse_port(self.port)
            server = await asyncio.start_server(
                self._handle_connection, host=self.listen_host, port=number
            )
        except (OSError, ValueError) as exc:
            self.state = FAILED
            self.error = str(exc)
            log.warning("[TUNNEL] Skipping port %s: %s", self.port, exc)
            self.started.set()
            return

        self.state = LISTENING
        self.started.set()
        log.info("[TUNNEL] Local bridge created: %s -> %s", self.local_addr, self.remote_addr)
        try:
            await self._stopping.wait()
        finally:
            server.close()
            # Server.wait_closed() also waits for open connections.
            for session in list(self._sessions):
                session.cancel()
            await asyncio.gather(*self._sessions, return_exceptions=True)
            await server.wait_closed()
            log.info("[TUNNEL] Local bridge closed: %s", self.local_addr)

    def stop(self) -> None:
        """Close the listener and every open session."""
        self._stopping.set()

    async def _handle_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        if self._stopping.is_set():
            writer.close()
            return
        task = asyncio.current_task()
        self._sessions.add(task)
        try:
            session = BridgeSession(
                reader,
                writer,
                remote_host=self.remote_host,
                port=int(self.port),
                connect_timeout=self.connect_timeout,
            )
            await session.run()
        finally:
            self._sessions.discard(task)

    def status(self) -> ForwardStatus:
        return ForwardStatus(
            port=self.port,
            local_addr=self.local_addr,
            remote_addr=self.remote_addr,
            state=self.state,
            error=self.error,
        )


class BridgeManager:
    """Starts at most one ``BridgeListener`` per port and tracks their tasks."""

    def __init__(
        self,
        remote_host: str,
        *,
        listen_host: str = "127.0.0.1",
        registry: ForwardRegistry | None = None,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self.remote_host = remote_host
        self.listen_host = listen_host
        self.registry = registry if registry is not None else ForwardRegistry()
        self.connect_timeout = connect_timeout
        self._loop = loop
        self._listeners: dict[str, BridgeListener] = {}
        self._tasks: set[asyncio.Task] = set()

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Use ``loop`` for listeners requested from threads without one."""
        self._loop = loop

    def request_bridge(self, port: str, remote_host: str | None = None) -> bool:
        """Start a bridge for ``port`` unless one was already requested.

        Returns immediately; the listener binds in the background. Safe to
        call from the event loop or from other threads once a loop is bound.
        """

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        loop = self._loop or running
        if loop is None:
            raise RuntimeError("BridgeManager needs a running or bound event loop")

        if not self.registry.claim(port):
            return False

        host = remote_host or self.remote_host
        if running is loop:
            self._start_listener(port, host)
        else:
            loop.call_soon_threadsafe(self._start_listener, port, host)
        return True

    def _start_listener(self, port: str, remote_host: str) -> None:
        listener = BridgeListener(
            port,
            remote_host,
            listen_host=self.listen_host,
            connect_timeout=self.connect_timeout,
        )
        self._listeners[port] = listener
        task = asyncio.get_running_loop().create_task(listener.serve(), name=f"bridge-{port}")
        self._tasks.add(task)
        task.add_done_callback(self._on_listener_done)

    def _on_listener_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error("[TUNNEL] %s stopped unexpectedly", task.get_name(), exc_info=exc)

    async def wait_started(self, port: str) -> str:
        """Wait until the listener for ``port`` is bound or abandoned; return its state."""
        listener = self._listeners[port]
        await listener.started.wait()
        return listener.state

    def get(self, port: str) -> BridgeListener | None:
        return self._listeners.get(port)

    def forwards(self) -> list[ForwardStatus]:
        statuses = []
        for port in self.registry.snapshot():
            listener = self._listeners.get(port)
            if listener is None:
                statuses.append(
                    ForwardStatus(
                        port=port,
                        local_addr=f"{self.listen_host}:{port}",
                        remote_addr=f"{self.remote_host}:{port}",
                        state=PENDING,
                    )
                )
            else:
                statuses.append(listener.status())
        return statuses

    async def aclose(self) -> None:
        """Stop every listener and its open sessions."""
        for listener in self._listeners.values():
            listener.stop()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
