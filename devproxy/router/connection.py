"""
One accepted client socket driven by an h11 server-side state machine.

Requests are handed to the forwarder one at a time (HTTP/1.1 keep-alive).
Upgrade requests detach the raw stream so the tunnel can own it.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable

import h11

from devproxy.router.utils import is_upgrade_request

logger = logging.getLogger("devproxy.router")

READ_CHUNK_SIZE = 64 * 1024

Handler = Callable[["ClientConnection", h11.Request], Awaitable[None]]


class ClientConnection:
    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        handle_request: Handler,
        handle_upgrade: Handler,
        is_closing: Callable[[], bool] = lambda: False,
    ):
        self.reader = reader
        self.writer = writer
        self._h11 = h11.Connection(h11.SERVER)
        self._handle_request = handle_request
        self._handle_upgrade = handle_upgrade
        self._is_closing = is_closing
        self.idle = True
        self.closed = False
        self.detached = False
        self.response_started = False
        peer = writer.get_extra_info("peername")
        self.peer = f"{peer[0]}:{peer[1]}" if peer else "unknown"

    async def serve(self) -> None:
        """Read requests until the client goes away or the connection must close."""
        try:
            while not self.closed:
                self.idle = True
                event = await self.next_event()
                self.idle = False
                if not isinstance(event, h11.Request):
                    break
                self.response_started = False
                if is_upgrade_request(event.headers):
                    await self._handle_upgrade(self, event)
                    return
                await self._handle_request(self, event)
                if not await self._finish_cycle() or self._is_closing():
                    break
        except h11.RemoteProtocolError as exc:
            await self._reject(exc)
        except (ConnectionError, asyncio.IncompleteReadError) as exc:
            logger.debug("Client %s went away: %s", self.peer, exc)
        except Exception:
            logger.exception("Unhandled error on connection from %s", self.peer)
        finally:
            if not self.detached:
                await self.close()

    async def next_event(self):
        while True:
            event = self._h11.next_event()
            if event is h11.NEED_DATA:
                if self._h11.they_are_waiting_for_100_continue:
                    await self._send(h11.InformationalResponse(status_code=100, headers=[]))
                data = await self.reader.read(READ_CHUNK_SIZE)
                self._h11.receive_data(data)
                continue
            return event

    async def iter_request_body(self) -> AsyncIterator[bytes]:
        """Yield request body chunks as they arrive from the client"""
        while True:
            event = await self.next_event()
            if isinstance(event, h11.Data):
                yield bytes(event.data)
            else:
                return

    async def send_response(self, status_code: int, headers, reason: bytes = b"") -> None:
        self.response_started = True
        if self._is_closing():
            # Proxy is stopping: this is the last response on the connection
            headers = [*headers, (b"connection", b"close")]
        await self._send(h11.Response(status_code=status_code, headers=headers, reason=reason))

    async def send_data(self, data: bytes) -> None:
        if data:
            await self._send(h11.Data(data=data))

    async def end_response(self) -> None:
        await self._send(h11.EndOfMessage())

    async def send_simple_response(
        self,
        status_code: int,
        body: str | bytes,
        content_type: str = "text/plain; charset=utf-8",
    ) -> None:
        payload = body.encode("utf-8") if isinstance(body, str) else body
        headers = [
            (b"content-type", content_type.encode("latin-1")),
            (b"content-length", str(len(payload)).encode("ascii")),
        ]
        await self.send_response(status_code, headers)
        await self.send_data(payload)
        await self.end_response()

    def detach(self) -> bytes:
        """
        Stop speaking HTTP on this socket.

        Returns any bytes the client already sent after the request head
        (body bytes and early protocol data), which belong to the new owner.
        """
        self.detached = True
        self.idle = False
        chunks: list[bytes] = []
        while True:
            try:
                event = self._h11.next_event()
            except h11.RemoteProtocolError:
                break
            if isinstance(event, h11.Data):
                chunks.append(bytes(event.data))
            elif not isinstance(event, h11.EndOfMessage):
                break
        trailing, _closed = self._h11.trailing_data
        chunks.append(bytes(trailing))
        return b"".join(chunks)

    def abort(self) -> None:
        """Drop the connection without a response"""
        self.closed = True
        self.writer.transport.abort()

    async def close(self) -> None:
        self.closed = True
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError):
            pass

    def close_if_idle(self) -> bool:
        """Close a keep-alive connection that is waiting for its next request"""
        if self.idle and not self.closed and not self.detached:
            self.closed = True
            self.writer.close()
            return True
        return False

    async def _send(self, event) -> None:
        data = self._h11.send(event)
        if data:
            self.writer.write(data)
            await self.writer.drain()

    async def _finish_cycle(self) -> bool:
        if self.closed:
            return False
        # Discard whatever request body the backend did not read
        while self._h11.their_state is h11.SEND_BODY:
            event = await self.next_event()
            if not isinstance(event, h11.Data):
                break
        if self._h11.our_state is not h11.DONE or self._h11.their_state is not h11.DONE:
            return False
        self._h11.start_next_cycle()
        return True

    async def _reject(self, exc: h11.RemoteProtocolError) -> None:
        logger.debug("Bad request from %s: %s", self.peer, exc)
        if self.closed or self._h11.our_state not in (h11.IDLE, h11.SEND_RESPONSE):
            return
        try:
            await self.send_simple_response(exc.error_status_hint, f"Bad request: {exc}\n")
        except (h11.LocalProtocolError, ConnectionError, OSError):
            pass
