"""Throwaway loopback backends for proxy tests."""

import asyncio
import base64
import gzip
import hashlib
import json
import socket

import h11

WS_GUID = b"258EAFA5-E914-47DA-95CA-C5AB0DC85B11"

GZIP_BODY = gzip.compress(b"compressed payload " * 64, mtime=0)
BINARY_BODY = bytes(range(256)) * 4

# Fixed responses: path -> (status, headers, body)
CANNED = {
    "/gzip": (200, [(b"content-type", b"text/plain"), (b"content-encoding", b"gzip")], GZIP_BODY),
    "/binary": (200, [(b"content-type", b"application/octet-stream")], BINARY_BODY),
    "/cookies": (200, [(b"set-cookie", b"a=1; Path=/"), (b"set-cookie", b"b=2; Path=/")], b"ok"),
}


def free_port() -> int:
    """A port nothing is listening on"""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def websocket_accept(key: bytes) -> bytes:
    return base64.b64encode(hashlib.sha1(key + WS_GUID).digest())


class EchoBackend:
    """
    HTTP/1.1 backend that answers with a JSON description of the request.

    GET /status/<code> answers with that status; GET /stream answers with a
    chunked body sent in three pieces; GET /slow answers after half a second;
    GET /broken sends headers and part of the body, then drops the socket.
    Paths in CANNED get their fixed response.
    """

    def __init__(self):
        self.server = None
        self.port = None
        self.requests = []

    async def start(self) -> "EchoBackend":
        self.server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self.server.sockets[0].getsockname()[1]
        return self

    async def stop(self):
        self.server.close()
        await self.server.wait_closed()

    async def _handle(self, reader, writer):
        conn = h11.Connection(h11.SERVER)
        request = None
        body = b""
        try:
            while True:
                event = conn.next_event()
                if event is h11.NEED_DATA:
                    conn.receive_data(await reader.read(65536))
                    continue
                if isinstance(event, h11.Request):
                    request, body = event, b""
                elif isinstance(event, h11.Data):
                    body += bytes(event.data)
                elif isinstance(event, h11.EndOfMessage):
                    if request.target == b"/broken":
                        writer.write(b"HTTP/1.1 200 OK\r\ncontent-length: 100\r\n\r\n0123456789")
                        await writer.drain()
                        break
                    await self._respond(conn, writer, request, body)
                    if conn.our_state is not h11.DONE or conn.their_state is not h11.DONE:
                        break
                    conn.start_next_cycle()
                else:
                    break
        except (h11.RemoteProtocolError, ConnectionError):
            pass
        finally:
            writer.close()

    async def _respond(self, conn, writer, request, body):
        target = request.target.decode()
        headers = {name.decode(): value.decode() for name, value in request.headers.raw_items()}
        self.requests.append({"method": request.method.decode(), "target": target, "headers": headers, "body": body})

        if target == "/slow":
            await asyncio.sleep(0.5)

        if target in CANNED:
            status, canned_headers, canned_body = CANNED[target]
            out = conn.send(
                h11.Response(
                    status_code=status,
                    headers=[*canned_headers, (b"content-length", str(len(canned_body)).encode())],
                )
            )
            out += conn.send(h11.Data(data=canned_body))
            out += conn.send(h11.EndOfMessage())
            writer.write(out)
            await writer.drain()
            return

        if target == "/stream":
            out = conn.send(h11.Response(status_code=200, headers=[(b"content-type", b"text/plain")]))
            for piece in (b"one,", b"two,", b"three"):
                out += conn.send(h11.Data(data=piece))
            out += conn.send(h11.EndOfMessage())
            writer.write(out)
            await writer.drain()
            return

        status = 200
        if target.startswith("/status/"):
            status = int(target.rsplit("/", 1)[1])
        payload = json.dumps(
            {
                "method": request.method.decode(),
                "target": target,
                "host": headers.get("host") or headers.get("Host"),
                "headers": headers,
                "body": body.decode("latin-1"),
            }
        ).encode()
        out = conn.send(
            h11.Response(
                status_code=status,
                headers=[
                    (b"content-type", b"application/json"),
                    (b"content-length", str(len(payload)).encode()),
                    (b"x-backend", b"echo"),
                ],
            )
        )
        out += conn.send(h11.Data(data=payload))
        out += conn.send(h11.EndOfMessage())
        writer.write(out)
        await writer.drain()


class RawUpgradeBackend:
    """
    Accepts a WebSocket-style handshake, answers 101, then echoes raw bytes.

    Receiving exactly b"bye" makes the backend close its side of the tunnel.
    """

    def __init__(self):
        self.server = None
        self.port = None
        self.handshakes = []

    async def start(self) -> "RawUpgradeBackend":
        self.server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self.server.sockets[0].getsockname()[1]
        return self

    async def stop(self):
        self.server.close()
        await self.server.wait_closed()

    async def _handle(self, reader, writer):
        try:
            head = await reader.readuntil(b"\r\n\r\n")
            self.handshakes.append(head)
            key = b""
            for line in head.split(b"\r\n")[1:]:
                name, _, value = line.partition(b":")
                if name.strip().lower() == b"sec-websocket-key":
                    key = value.strip()
            writer.write(
                b"HTTP/1.1 101 Switching Protocols\r\n"
                b"Upgrade: websocket\r\n"
                b"Connection: Upgrade\r\n"
                b"Sec-WebSocket-Accept: " + websocket_accept(key) + b"\r\n\r\n"
            )
            await writer.drain()
            while True:
                data = await reader.read(65536)
                if not data or data == b"bye":
                    break
                writer.write(data)
                await writer.drain()
        except (asyncio.IncompleteReadError, ConnectionError):
            pass
        finally:
            writer.close()
