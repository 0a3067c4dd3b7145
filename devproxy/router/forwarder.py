"""
Forwarding of plain HTTP requests to route backends.

Request and response bodies are streamed; nothing is buffered beyond one
chunk. There is no retry and no timeout: a hung backend stalls only its own
client connection.
"""

import logging
import time
import uuid
from collections.abc import Callable

import h11
import httpx

from devproxy.errors import UnknownRoute, UpstreamUnavailable
from devproxy.models import Route
from devproxy.router.connection import ClientConnection
from devproxy.router.pages import unknown_route_page
from devproxy.router.utils import extract_subdomain, get_header, has_request_body
from devproxy.structured_logging import RequestLogger

logger = logging.getLogger("devproxy.router")

CONTROL_BASE_URL = "http://devproxy.control"

RouteResolver = Callable[[str], Route | None]


def create_upstream_client() -> httpx.AsyncClient:
    """
    Client for backend requests.

    No timeouts, no redirects, no proxy settings from the environment: the
    backend is always contacted directly and its answer passed through as is.
    """
    return httpx.AsyncClient(
        timeout=httpx.Timeout(None),
        limits=httpx.Limits(max_connections=None, max_keepalive_connections=20),
        follow_redirects=False,
        trust_env=False,
    )


def create_control_client(app) -> httpx.AsyncClient:
    """Client that dispatches requests into the in-process control app"""
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url=CONTROL_BASE_URL)


def rewrite_host(headers, host: bytes) -> list[tuple[bytes, bytes]]:
    """Original headers in order, with Host replaced (or added first)"""
    rewritten: list[tuple[bytes, bytes]] = []
    replaced = False
    for name, value in headers:
        if name.lower() == b"host":
            if not replaced:
                rewritten.append((name, host))
                replaced = True
            continue
        rewritten.append((name, value))
    if not replaced:
        rewritten.insert(0, (b"Host", host))
    return rewritten


class HttpForwarder:
    """
    Handles one proxied HTTP request at a time per client connection.

    Args:
        resolve_route: Looks up a route by name and marks it accessed
        upstream_client: httpx client used for backend requests
        control_client: httpx client bound to the control app, for requests
            that are not addressed to a route
        log_requests: Emit one access log line per request
        dashboard_url: Link shown on the unknown-route page
    """

    def __init__(
        self,
        resolve_route: RouteResolver,
        upstream_client: httpx.AsyncClient,
        control_client: httpx.AsyncClient | None = None,
        log_requests: bool = False,
        dashboard_url: str = "/",
    ):
        self._resolve_route = resolve_route
        self._upstream = upstream_client
        self._control = control_client
        self.log_requests = log_requests
        self.dashboard_url = dashboard_url

    async def handle(self, conn: ClientConnection, request: h11.Request) -> None:
        request_id = str(uuid.uuid4())[:8]
        log = RequestLogger(logger, request_id)
        start = time.time()

        subdomain = extract_subdomain(get_header(request.headers, b"host"))
        if subdomain is None:
            status = await self._serve_control(conn, request, log)
        else:
            route = self._resolve_route(subdomain)
            if route is None:
                status = await self._reject_unknown(conn, UnknownRoute(subdomain), log)
            else:
                status = await self._forward(conn, request, route, log)

        if self.log_requests:
            log.info(
                "[%s] %s %s -> %s (%dms)",
                request_id,
                request.method.decode("ascii", "replace"),
                request.target.decode("latin-1"),
                status if status is not None else "aborted",
                int((time.time() - start) * 1000),
            )

    async def _forward(self, conn: ClientConnection, request: h11.Request, route: Route, log) -> int | None:
        url = httpx.URL(
            scheme="http",
            host=route.target_host,
            port=route.target_port,
            raw_path=request.target,
        )
        headers = rewrite_host(request.headers.raw_items(), route.target.encode("latin-1"))
        upstream_request = httpx.Request(
            request.method.decode("ascii"),
            url,
            headers=headers,
            content=conn.iter_request_body() if has_request_body(request.headers) else None,
        )
        return await self._relay(conn, self._upstream, upstream_request, route.target, log)

    async def _serve_control(self, conn: ClientConnection, request: h11.Request, log) -> int | None:
        if self._control is None:
            await conn.send_simple_response(404, "Not found\n")
            return 404
        url = httpx.URL(CONTROL_BASE_URL).copy_with(raw_path=request.target)
        control_request = httpx.Request(
            request.method.decode("ascii"),
            url,
            headers=list(request.headers.raw_items()),
            content=conn.iter_request_body() if has_request_body(request.headers) else None,
        )
        return await self._relay(conn, self._control, control_request, "control", log)

    async def _relay(
        self,
        conn: ClientConnection,
        client: httpx.AsyncClient,
        upstream_request: httpx.Request,
        target: str,
        log,
    ) -> int | None:
        try:
            response = await client.send(upstream_request, stream=True)
        except httpx.HTTPError as exc:
            error = UpstreamUnavailable(target, str(exc) or type(exc).__name__)
            log.warning("[%s] Upstream request failed: %s", log.request_id, error)
            if conn.response_started:
                conn.abort()
                return None
            await conn.send_simple_response(502, f"Proxy error: {error.reason}\n")
            return 502

        try:
            await conn.send_response(
                response.status_code,
                response.headers.raw,
                response.reason_phrase.encode("latin-1", "replace"),
            )
            async for chunk in response.aiter_raw():
                await conn.send_data(chunk)
            await conn.end_response()
        except (httpx.HTTPError, h11.LocalProtocolError) as exc:
            # Headers may already be on the wire; a partial response cannot be repaired
            log.warning("[%s] Response from %s interrupted: %s", log.request_id, target, exc)
            conn.abort()
            return None
        finally:
            await response.aclose()
        return response.status_code

    async def _reject_unknown(self, conn: ClientConnection, error: UnknownRoute, log) -> int:
        log.info("[%s] No route registered for %s", log.request_id, error.name)
        page = unknown_route_page(error.name, self.dashboard_url)
        await conn.send_simple_response(502, page, "text/html; charset=utf-8")
        return 502
