"""
Process lifecycle for the AgentCore runtime.

Runs the HTTP bridge listener and the loopback A2A listener as two
uvicorn servers in one event loop, and drains them in a fixed order on
SIGTERM/SIGINT: health gate first, then the bridge, then the A2A
server, then tracing, all against a single shutdown deadline.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import socket
from typing import Dict, Iterator, List, Optional

import uvicorn
from fastapi import FastAPI
from httpx import AsyncClient

from .a2a.agents import Agent, EchoAgent, load_agent
from .a2a.server import A2A_PATH, create_a2a_server
from .errors import ListenerError, ShutdownError, StartupError
from .health import HealthGate
from .main import create_app
from .pack import build_agent_card, load_pack, resolve_agent_name
from .settings import Settings
from .tracing import TracingShutdown, setup_tracing

logger = logging.getLogger(__name__)

BRIDGE_LISTENER = "bridge"
A2A_LISTENER = "a2a"

_STARTUP_POLL_INTERVAL = 0.01


class ListenerServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the runtime."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


def bind_socket(host: str, port: int) -> socket.socket:
    """Bind a listening TCP socket; port 0 picks an ephemeral port.

    Raises:
        StartupError: the address cannot be bound.
    """
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind((host, port))
    except OSError as exc:
        sock.close()
        raise StartupError(f"listen {host}:{port}: {exc}") from exc
    sock.set_inheritable(True)
    return sock


class Listener:
    """One uvicorn server bound to one pre-bound socket."""

    def __init__(self, name: str, app: FastAPI, sock: socket.socket, settings: Settings):
        self.name = name
        self.sock = sock
        self.port: int = sock.getsockname()[1]
        config = uvicorn.Config(
            app,
            lifespan="on",
            log_config=None,
            timeout_keep_alive=settings.read_header_timeout,
            ws_max_size=settings.ws_max_frame_bytes,
        )
        self.server = ListenerServer(config)
        self.task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Start serving and wait until uvicorn reports it is accepting connections."""
        self.task = asyncio.create_task(self.server.serve(sockets=[self.sock]), name=f"{self.name}-listener")
        while not self.server.started:
            if self.task.done():
                error = self.task.exception()
                raise StartupError(f"{self.name} listener failed to start") from error
            await asyncio.sleep(_STARTUP_POLL_INTERVAL)
        logger.info("listening", extra={"listener": self.name, "port": self.port})

    async def stop(self, timeout: float) -> None:
        """Ask uvicorn to drain and wait up to ``timeout`` seconds.

        Raises:
            ShutdownError: the listener did not drain in time or failed while draining.
        """
        if self.task is None:
            self.sock.close()
            return

        self.server.should_exit = True
        try:
            await asyncio.wait_for(asyncio.shield(self.task), max(timeout, 0))
        except asyncio.TimeoutError:
            self.server.force_exit = True
            self.task.cancel()
            await asyncio.gather(self.task, return_exceptions=True)
            raise ShutdownError(f"{self.name} listener did not drain before the shutdown deadline")
        except Exception as exc:
            raise ShutdownError(f"{self.name} listener failed during shutdown: {exc}") from exc
        finally:
            self.sock.close()
        logger.info("listener stopped", extra={"listener": self.name})


class AgentRuntime:
    """
    Owns the listeners, the shared health gate and tracing for one process.

    Args:
        settings: Validated runtime settings.
        agent: Agent served by the A2A listener; built from the settings when omitted.
        health: Shared health gate; a fresh ready gate when omitted.
        http_client: httpx client the bridge uses for upstream calls.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        agent: Optional[Agent] = None,
        health: Optional[HealthGate] = None,
        http_client: Optional[AsyncClient] = None,
    ):
        self.settings = settings
        self.agent = agent
        self.health = health or HealthGate()
        self.http_client = http_client
        self.listeners: Dict[str, Listener] = {}
        self._tracing_shutdown: Optional[TracingShutdown] = None
        self._stop_requested = asyncio.Event()
        self._shutdown_done = False

    @property
    def bridge_port(self) -> Optional[int]:
        listener = self.listeners.get(BRIDGE_LISTENER)
        return listener.port if listener else None

    @property
    def a2a_port(self) -> Optional[int]:
        listener = self.listeners.get(A2A_LISTENER)
        return listener.port if listener else None

    def _build_agent(self, agent_name: str) -> Agent:
        if self.agent is not None:
            return self.agent
        if self.settings.agent_factory:
            return load_agent(self.settings.agent_factory, name=agent_name)
        return EchoAgent(agent_name)

    async def start(self) -> None:
        """
        Load the pack, bind the sockets and start the enabled listeners.

        Raises:
            PackError: the prompt pack cannot be loaded or names no agent.
            StartupError: a socket cannot be bound or a listener fails to start.
        """
        settings = self.settings
        pack = load_pack(settings)
        agent_name = resolve_agent_name(settings, pack)
        agent = self._build_agent(agent_name)
        logger.info("resolved agent", extra={"name": agent_name, "pack": settings.pack_file or "inline"})

        self._tracing_shutdown = setup_tracing(settings)

        pending: List[Listener] = []
        try:
            a2a_url = settings.a2a_url
            if settings.wants_a2a_server:
                a2a_sock = bind_socket(settings.host, settings.a2a_port)
                try:
                    a2a_port = a2a_sock.getsockname()[1]
                    a2a_url = f"http://127.0.0.1:{a2a_port}{A2A_PATH}"
                    card = build_agent_card(pack, agent_name, a2a_url)
                    a2a_server = create_a2a_server(agent, card, self.health)
                    pending.append(Listener(A2A_LISTENER, a2a_server.get_fastapi_app(), a2a_sock, settings))
                except BaseException:
                    a2a_sock.close()
                    raise

            if settings.wants_http_bridge:
                bridge_sock = bind_socket(settings.host, settings.port)
                try:
                    bridge_app = create_app(settings, self.health, a2a_url=a2a_url, http_client=self.http_client)
                    pending.append(Listener(BRIDGE_LISTENER, bridge_app, bridge_sock, settings))
                except BaseException:
                    bridge_sock.close()
                    raise

            for listener in pending:
                self.listeners[listener.name] = listener
                await listener.start()
        except BaseException:
            for listener in pending:
                if listener.name not in self.listeners:
                    listener.sock.close()
            await self.shutdown(raise_errors=False)
            raise

        logger.info(
            "runtime started",
            extra={
                "protocol": settings.protocol_mode or "both",
                "bridge_port": self.bridge_port,
                "a2a_port": self.a2a_port,
            },
        )

    def request_shutdown(self) -> None:
        """Begin graceful shutdown (what SIGTERM/SIGINT do)."""
        self._stop_requested.set()

    def _on_signal(self, signum: int) -> None:
        logger.info("received signal, shutting down", extra={"signal": signal.Signals(signum).name})
        self.request_shutdown()

    async def run(self) -> None:
        """
        Start, serve until a signal arrives or a listener dies, then shut down.

        Raises:
            ListenerError: a listener exited without being asked to.
            ShutdownError: the bridge listener did not drain cleanly.
        """
        await self.start()

        loop = asyncio.get_running_loop()
        installed: List[int] = []
        for signum in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(signum, self._on_signal, signum)
                installed.append(signum)
            except (NotImplementedError, RuntimeError):
                logger.warning("cannot install signal handler", extra={"signal": signal.Signals(signum).name})

        stop_waiter = asyncio.create_task(self._stop_requested.wait())
        listener_tasks = {listener.task: listener.name for listener in self.listeners.values() if listener.task}
        try:
            done, _ = await asyncio.wait(
                [stop_waiter, *listener_tasks], return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for signum in installed:
                loop.remove_signal_handler(signum)
            stop_waiter.cancel()

        failed = [listener_tasks[task] for task in done if task in listener_tasks]
        if failed and not self._stop_requested.is_set():
            logger.error("listener exited unexpectedly", extra={"listeners": failed})
            await self.shutdown(raise_errors=False)
            raise ListenerError(f"{', '.join(sorted(failed))} listener exited unexpectedly")

        await self.shutdown()

    async def shutdown(self, raise_errors: bool = True) -> None:
        """
        Drain everything against one deadline.

        Order: health gate, bridge listener, A2A listener, tracing. A2A and
        tracing failures are logged; a bridge failure is raised after the
        remaining steps ran.
        """
        if self._shutdown_done:
            return
        self._shutdown_done = True

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.shutdown_timeout

        def remaining() -> float:
            return deadline - loop.time()

        self.health.set_unhealthy()

        bridge_error: Optional[ShutdownError] = None
        bridge = self.listeners.get(BRIDGE_LISTENER)
        if bridge is not None:
            try:
                await bridge.stop(remaining())
            except ShutdownError as exc:
                logger.error("http shutdown", extra={"error": str(exc)})
                bridge_error = exc

        a2a = self.listeners.get(A2A_LISTENER)
        if a2a is not None:
            try:
                await a2a.stop(remaining())
            except ShutdownError as exc:
                logger.error("a2a server shutdown", extra={"error": str(exc)})

        if self._tracing_shutdown is not None:
            try:
                await asyncio.wait_for(self._tracing_shutdown(), max(remaining(), 0))
            except Exception as exc:
                logger.error("tracing shutdown", extra={"error": str(exc)})

        if bridge_error is not None and raise_errors:
            raise bridge_error

        logger.info("shutdown complete")
