"""
Upgrade (WebSocket) passthrough.

The original handshake is replayed to the backend with a substituted Host
header, then bytes are copied both ways until either side closes. Failures
are socket-level: the client is dropped without an HTTP response.
"""

import asyncio
import logging
import uuid

import h11

from devproxy.models import Route
from devproxy.router.connection import READ_CHUNK_SIZE, ClientConnection
from devproxy.router.forwarder import RouteResolver
from devproxy.router.utils import extract_subdomain, get_header

logger = logging.getLogger("devproxy.tunnel")


def build_handshake(request: h11.Request, route: Route) -> bytes:
    """Request line and header block for the backend, Host replaced"""
    lines = [
        b"%s %s HTTP/%s" % (request.method, request.target, request.http_version),
        b"host: " + route.target.encode("latin-1"),
    ]
    for name, value in request.headers.raw_items():
        if name.lower() == b"host":
            continue
        lines.append(name + b": " + value)
    return b"\r\n".join(lines) + b"\r\n\r\n"


async def pipe(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
    """Copy bytes until EOF"""
    while True:
        data = await reader.read(READ_CHUNK_SIZE)
        if not data:
            break
        writer.write(data)
        await writer.drain()


def _drop(writer: asyncio.StreamWriter) -> None:
    if not writer.is_closing():
        writer.close()


class UpgradeTunnel:
    def __init__(self, resolve_route: RouteResolver):
        self._resolve_route = resolve_route
        self.active = 0

    async def handle(self, conn: ClientConnection, request: h11.Request) -> None:
        request_id = str(uuid.uuid4())[:8]
        subdomain = extract_subdomain(get_header(request.headers, b"host"))
        if subdomain is None:
            logger.debug("[%s] Upgrade without a route subdomain from %s, dropping", request_id, conn.peer)
            conn.abort()
            return

        route = self._resolve_route(subdomain)
        if route is None:
            logger.info("[%s] Upgrade for unknown route %s, dropping", request_id, subdomain)
            conn.abort()
            return

        head = conn.detach()
        try:
            backend_reader, backend_writer = await asyncio.open_connection(route.target_host, route.target_port)
        except OSError as exc:
            logger.warning("[%s] Upgrade to %s failed: %s", request_id, route.target, exc)
            conn.writer.transport.abort()
            return

        logger.info(
            "[%s] Tunnel open: %s %s -> %s",
            request_id,
            subdomain,
            request.target.decode("latin-1"),
            route.target,
        )
        self.active += 1
        try:
            backend_writer.write(build_handshake(request, route))
            if head:
                backend_writer.write(head)
            await relay(conn.reader, conn.writer, backend_reader, backend_writer)
        finally:
            self.active -= 1
            logger.debug("[%s] Tunnel closed for %s", request_id, subdomain)


async def relay(
    client_reader: asyncio.StreamReader,
    client_writer: asyncio.StreamWriter,
    backend_reader: asyncio.StreamReader,
    backend_writer: asyncio.StreamWriter,
) -> None:
    """
    Run both copy directions until the first one ends, then close both sides.

    An EOF or error on either socket tears down the whole tunnel.
    """
    tasks = [
        asyncio.create_task(pipe(client_reader, backend_writer)),
        asyncio.create_task(pipe(backend_reader, client_writer)),
    ]
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            exc = task.exception()
            if exc is not None:
                logger.debug("Tunnel side failed: %s", exc)
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except (ConnectionError, OSError):
                    pass
        _drop(backend_writer)
        _drop(client_writer)
        for writer in (backend_writer, client_writer):
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass
