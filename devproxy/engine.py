"""
Proxy engine: owns the listening socket and the route registry.

All lifecycle state lives on the instance, so several engines can run side
by side (tests do this). Registry operations never await, which keeps them
atomic with respect to request dispatch on the event loop.
"""

import asyncio
import logging
from collections.abc import Callable, Iterable
from enum import Enum

from .errors import BindFailure, DuplicateName
from .events import LifecycleEventBus, Listener
from .models import ProxyEvent, ProxyState, Route, RouteStatus, StartResult, StopResult
from .ports import DEFAULT_PORTS, LOOPBACK_HOST, PortAllocator, build_candidates
from .registry import RouteRegistry, validate_name, validate_port
from .router.connection import ClientConnection
from .router.control import create_control_app
from .router.forwarder import HttpForwarder, create_control_client, create_upstream_client
from .router.tunnel import UpgradeTunnel

logger = logging.getLogger("devproxy.engine")


class EngineState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


def route_url(name: str, port: int | None) -> str:
    return f"http://{name}.localhost:{port}"


class ProxyEngine:
    """
    Local subdomain reverse proxy.

    Usage:
        engine = ProxyEngine()
        await engine.start()
        await engine.add_route("my-app", 3000)
        # http://my-app.localhost:<port>/ now reaches 127.0.0.1:3000
        await engine.stop()
    """

    def __init__(
        self,
        host: str = LOOPBACK_HOST,
        default_ports: Iterable[int] = DEFAULT_PORTS,
        allocator: PortAllocator | None = None,
        log_requests: bool = False,
    ):
        self.host = host
        self.default_ports = tuple(default_ports)
        self.allocator = allocator or PortAllocator(host)
        self.log_requests = log_requests

        self._registry = RouteRegistry()
        self._events = LifecycleEventBus()
        self._state = EngineState.STOPPED
        self._server: asyncio.AbstractServer | None = None
        self._port: int | None = None
        self._lifecycle_lock = asyncio.Lock()
        self._closing = False
        self._connections: dict[ClientConnection, asyncio.Task] = {}

        self.control_app = create_control_app(self)
        self._upstream_client = None
        self._control_client = None
        self._forwarder: HttpForwarder | None = None
        self._tunnel: UpgradeTunnel | None = None

    async def __aenter__(self) -> "ProxyEngine":
        await self._start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state is EngineState.RUNNING

    @property
    def port(self) -> int | None:
        return self._port

    @property
    def active_tunnels(self) -> int:
        return self._tunnel.active if self._tunnel is not None else 0

    # Lifecycle

    async def start(self, preferred_port: int | None = None) -> StartResult:
        """
        Bind the listening socket, preferring `preferred_port`.

        Idempotent while running. A failed bind leaves the engine stopped and
        is reported both in the result and as an `error` event.
        """
        try:
            port = await self._start(preferred_port)
        except BindFailure as exc:
            return StartResult(ok=False, error=str(exc))
        return StartResult(ok=True, port=port)

    async def _start(self, preferred_port: int | None = None) -> int:
        async with self._lifecycle_lock:
            if self._server is not None:
                return self._port

            self._state = EngineState.STARTING
            candidates = build_candidates(preferred_port, self.default_ports)
            port = None
            try:
                port = self.allocator.pick(candidates)
                server = await asyncio.start_server(self._accept, self.host, port)
            except OSError as exc:
                self._state = EngineState.STOPPED
                error = BindFailure(port, exc.strerror or str(exc))
                logger.error("Proxy failed to start: %s", error)
                self._publish("error", error=str(error))
                raise error from exc

            self._server = server
            self._port = port
            self._open_handlers(port)
            self._state = EngineState.RUNNING
            logger.info("Proxy started on http://%s:%d", self.host, port)
            self._publish("started")
            return port

    async def stop(self) -> StopResult:
        """
        Close the listening socket and clear all routes.

        Idle keep-alive connections are closed. In-flight requests finish
        with `Connection: close` and their connections are closed after the
        response; open tunnels are left to end on their own. All of them are
        waited for.
        """
        async with self._lifecycle_lock:
            server = self._server
            if server is None:
                return StopResult(ok=True)

            self._closing = True
            self._state = EngineState.STOPPING
            server.close()
            for conn in list(self._connections):
                conn.close_if_idle()
            pending = list(self._connections.values())
            if pending:
                logger.info("Waiting for %d open connection(s) to finish", len(pending))
                await asyncio.wait(pending)
            await server.wait_closed()
            await self._close_handlers()

            self._server = None
            self._port = None
            self._registry.clear()
            self._closing = False
            self._state = EngineState.STOPPED
            logger.info("Proxy stopped")
            self._publish("stopped")
            return StopResult(ok=True)

    # Route registry

    async def add_route(
        self,
        name: str,
        target_port: int,
        *,
        task_id: str | None = None,
        target_host: str | None = None,
    ) -> Route:
        """
        Register `name` -> target_host:target_port, starting the proxy if needed.

        Raises:
            InvalidName: name is not a lowercase slug
            DuplicateName: name is already registered
            BindFailure: the implicit start could not bind a port
        """
        if self._closing:
            # Let the stop in progress finish clearing its routes first
            async with self._lifecycle_lock:
                pass
        validate_name(name)
        validate_port(target_port)
        if name in self._registry:
            raise DuplicateName(name)

        if self._server is None:
            await self._start()

        route = self._registry.add(
            name,
            target_host,
            target_port,
            url=route_url(name, self._port),
            task_id=task_id,
        )
        logger.info("Route added: %s -> %s", name, route.target)
        self._publish("route:added", route=route.copy())
        return route.copy()

    def remove_route(self, name: str) -> bool:
        route = self._registry.get(name)
        if route is None or not self._registry.remove(name):
            return False
        logger.info("Route removed: %s", name)
        self._publish("route:removed", route=route.copy())
        return True

    def update_route_status(self, name: str, status: RouteStatus | str) -> bool:
        if not self._registry.update_status(name, status):
            return False
        route = self._registry.get(name)
        logger.debug("Route %s status -> %s", name, route.status.value)
        self._publish("route:status", route=route.copy())
        return True

    def get_route(self, name: str) -> Route | None:
        route = self._registry.get(name)
        return route.copy() if route is not None else None

    def get_routes(self) -> list[Route]:
        return [route.copy() for route in self._registry.list()]

    def get_state(self) -> ProxyState:
        return ProxyState(running=self.running, port=self._port, routes=self.get_routes())

    def on_event(self, listener: Listener) -> Callable[[], None]:
        """Subscribe to lifecycle events; returns the unsubscribe function"""
        return self._events.subscribe(listener)

    # Connection handling

    def _resolve_route(self, name: str) -> Route | None:
        route = self._registry.touch(name)
        return route.copy() if route is not None else None

    def _open_handlers(self, port: int) -> None:
        self._upstream_client = create_upstream_client()
        self._control_client = create_control_client(self.control_app)
        self._forwarder = HttpForwarder(
            self._resolve_route,
            self._upstream_client,
            self._control_client,
            log_requests=self.log_requests,
            dashboard_url=f"http://localhost:{port}",
        )
        self._tunnel = UpgradeTunnel(self._resolve_route)

    async def _close_handlers(self) -> None:
        for client in (self._upstream_client, self._control_client):
            if client is not None:
                await client.aclose()
        self._upstream_client = None
        self._control_client = None
        self._forwarder = None
        self._tunnel = None

    async def _accept(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        forwarder, tunnel = self._forwarder, self._tunnel
        if forwarder is None or tunnel is None:
            writer.transport.abort()
            return
        conn = ClientConnection(reader, writer, forwarder.handle, tunnel.handle, lambda: self._closing)
        self._connections[conn] = asyncio.current_task()
        try:
            await conn.serve()
        finally:
            self._connections.pop(conn, None)

    def _publish(self, event_type: str, route: Route | None = None, error: str | None = None) -> None:
        self._events.publish(ProxyEvent(type=event_type, route=route, error=error))
