"""Ephemeral-port HTTP/1.1 server built on AnyIO.

Each ServerInstance runs its own event loop in a background thread (an AnyIO
blocking portal) so that plain synchronous test code can register handlers
and then talk to the server with any HTTP client.

Features:
- HTTP/1.1 request line + headers parsing
- Request bodies framed by Content-Length or chunked transfer coding
- One request per connection (Connection: close)
- Optional TLS via AnyIO's TLSListener
- Handlers may be sync (run in worker threads) or async (run on the loop)
"""

from __future__ import annotations

import functools
import inspect
import json as _json
import logging
import math
import ssl
import threading
from contextlib import ExitStack
from dataclasses import dataclass
from email.utils import formatdate
from http import HTTPStatus
from typing import Any, Awaitable, Callable, Iterable, Mapping
from urllib.parse import urlsplit

import anyio
import anyio.to_thread
from anyio.abc import AnyByteStream, SocketAttribute
from anyio.from_thread import start_blocking_portal
from anyio.streams.tls import TLSListener

from .headers import ParsedHeaders, normalize_headers, parse_headers

logger = logging.getLogger(__name__)

HeaderInput = Mapping[str, "str | Iterable[str]"]
Handler = Callable[["HttpRequest"], "HttpResponse | Awaitable[HttpResponse]"]

_IO_ERRORS = (
    anyio.BrokenResourceError,
    anyio.ClosedResourceError,
    anyio.EndOfStream,
    ssl.SSLError,
    OSError,
)


@dataclass(frozen=True, slots=True)
class HttpRequest:
    method: str
    path: str
    version: str
    headers: ParsedHeaders
    body: bytes

    @property
    def route(self) -> str:
        """Request target without its query string."""
        return urlsplit(self.path).path

    def header(self, name: str) -> str | None:
        """First value of a header, looked up case-insensitively."""
        wanted = name.lower()
        for key, values in self.headers.items():
            if key.lower() == wanted and values:
                return values[0]
        return None


@dataclass(frozen=True, slots=True)
class HttpResponse:
    status: int = 200
    headers: HeaderInput | None = None
    body: bytes = b""

    @staticmethod
    def text(
        text: str,
        *,
        status: int = 200,
        headers: HeaderInput | None = None,
        encoding: str = "utf-8",
    ) -> "HttpResponse":
        body = text.encode(encoding)
        merged: HeaderInput = {"Content-Type": f"text/plain; charset={encoding}"}
        if headers:
            merged = {**merged, **headers}
        return HttpResponse(status=status, headers=merged, body=body)

    @staticmethod
    def json(
        obj: Any,
        *,
        status: int = 200,
        headers: HeaderInput | None = None,
    ) -> "HttpResponse":
        body = _json.dumps(obj, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        merged: HeaderInput = {"Content-Type": "application/json; charset=utf-8"}
        if headers:
            merged = {**merged, **headers}
        return HttpResponse(status=status, headers=merged, body=body)


def _status_line(status: int) -> str:
    try:
        text = HTTPStatus(status).phrase
    except ValueError:
        text = "Unknown"
    return f"HTTP/1.1 {status} {text}\r\n"


async def _read_until(
    stream: AnyByteStream, marker: bytes, initial: bytes = b""
) -> tuple[bytes, bytes]:
    """Read up to and including marker; also return whatever was read past it."""
    buf = bytearray(initial)
    while True:
        idx = buf.find(marker)
        if idx != -1:
            end = idx + len(marker)
            return bytes(buf[:end]), bytes(buf[end:])
        try:
            chunk = await stream.receive(4096)
        except anyio.EndOfStream:
            return bytes(buf), b""
        if not chunk:
            return bytes(buf), b""
        buf.extend(chunk)


async def _read_exact(
    stream: AnyByteStream, n: int, initial: bytes = b""
) -> tuple[bytes, bytes]:
    """Read n bytes (fewer on EOF); also return the part of initial beyond them."""
    buf = bytearray(initial)
    while len(buf) < n:
        try:
            chunk = await stream.receive(n - len(buf))
        except anyio.EndOfStream:
            break
        if not chunk:
            break
        buf.extend(chunk)
    return bytes(buf[:n]), bytes(buf[n:])


async def _read_chunked(stream: AnyByteStream, initial: bytes = b"") -> bytes:
    """Decode a chunked body; chunk extensions and trailers are discarded."""
    body = bytearray()
    rest = initial
    while True:
        line, rest = await _read_until(stream, b"\r\n", rest)
        if not line.endswith(b"\r\n"):
            raise ValueError("truncated chunked body")
        size_field = line[:-2].split(b";", 1)[0].strip()
        try:
            size = int(size_field, 16)
        except ValueError:
            raise ValueError(f"invalid chunk size: {size_field!r}") from None
        if size < 0:
            raise ValueError(f"invalid chunk size: {size_field!r}")
        if size == 0:
            break
        data, rest = await _read_exact(stream, size + 2, rest)
        if len(data) < size + 2:
            raise ValueError("truncated chunked body")
        if data[size:] != b"\r\n":
            raise ValueError("chunk data not followed by CRLF")
        body.extend(data[:size])

    # trailer section ends with an empty line
    while True:
        line, rest = await _read_until(stream, b"\r\n", rest)
        if not line.endswith(b"\r\n"):
            raise ValueError("truncated chunked body")
        if line == b"\r\n":
            return bytes(body)


def _parse_head(block: bytes) -> tuple[str, str, str, ParsedHeaders]:
    # block contains request line + headers ending with \r\n\r\n
    head = block.decode("iso-8859-1")
    request_line, _, header_block = head.partition("\r\n")
    if not request_line:
        raise ValueError("missing request line")

    parts = request_line.split(" ")
    if len(parts) != 3:
        raise ValueError("invalid request line")
    method, path, version = parts
    return method, path, version, parse_headers(header_block)


def _content_length(headers: ParsedHeaders) -> int:
    for name, values in headers.items():
        if name.lower() == "content-length" and values:
            try:
                length = int(values[0])
            except ValueError:
                raise ValueError(f"invalid content-length: {values[0]!r}") from None
            if length < 0:
                raise ValueError(f"invalid content-length: {length}")
            return length
    return 0


def _is_chunked(headers: ParsedHeaders) -> bool:
    for name, values in headers.items():
        if name.lower() == "transfer-encoding":
            codings = [c.strip().lower() for value in values for c in value.split(",")]
            return "chunked" in codings
    return False


async def _read_body(stream: AnyByteStream, headers: ParsedHeaders, initial: bytes) -> bytes:
    # chunked framing wins over Content-Length
    if _is_chunked(headers):
        return await _read_chunked(stream, initial)
    content_length = _content_length(headers)
    if not content_length:
        return b""
    body, _ = await _read_exact(stream, content_length, initial)
    return body


async def _write_response(stream: AnyByteStream, response: HttpResponse) -> None:
    headers = normalize_headers(response.headers or {})
    body = response.body or b""
    present = {name.lower() for name in headers}

    # Default headers
    if "date" not in present:
        headers["Date"] = [formatdate(usegmt=True)]
    if "content-length" not in present:
        headers["Content-Length"] = [str(len(body))]
    if "connection" not in present:
        headers["Connection"] = ["close"]

    start = _status_line(response.status).encode("ascii")
    head = b"".join(
        f"{name}: {value}\r\n".encode("iso-8859-1")
        for name, values in headers.items()
        for value in values
    )
    await stream.send(start + head + b"\r\n" + body)


def _is_async(handler: Handler) -> bool:
    return inspect.iscoroutinefunction(handler) or inspect.iscoroutinefunction(
        getattr(handler, "__call__", None)
    )


class ServerInstance:
    """One listener on an OS-chosen loopback port.

    The constructor binds and starts serving; an OSError from the bind
    propagates and nothing is left running. Handlers are registered per
    context path with add_context() and live until stop().
    """

    def __init__(self, *, ssl_context: ssl.SSLContext | None = None, host: str = "127.0.0.1"):
        self._ssl_context = ssl_context
        self._contexts: dict[str, Handler] = {}
        self._contexts_lock = threading.Lock()
        self._limiter: anyio.CapacityLimiter | None = None
        self._stopped = False

        self._exit_stack = ExitStack()
        try:
            self._portal = self._exit_stack.enter_context(start_blocking_portal())
            listener = self._portal.call(
                functools.partial(anyio.create_tcp_listener, local_host=host, local_port=0)
            )
            self._host, self._port = listener.extra(SocketAttribute.local_address)[:2]
            if ssl_context is not None:
                listener = TLSListener(listener, ssl_context, standard_compatible=False)
            _, self._cancel_scope = self._portal.start_task(self._serve, listener)
        except BaseException:
            self._exit_stack.close()
            raise
        logger.debug("Listening on %s", self.origin)

    @property
    def ssl(self) -> bool:
        return self._ssl_context is not None

    @property
    def port(self) -> int:
        return self._port

    @property
    def origin(self) -> str:
        scheme = "https" if self.ssl else "http"
        return f"{scheme}://{self._host}:{self._port}"

    @property
    def running(self) -> bool:
        return not self._stopped

    def add_context(self, path: str, handler: Handler) -> None:
        with self._contexts_lock:
            self._contexts[path] = handler

    def stop(self) -> None:
        """Close the listener and drop in-flight connections at once."""
        if self._stopped:
            return
        self._stopped = True
        try:
            self._portal.call(self._cancel_scope.cancel)
        finally:
            self._exit_stack.close()
        logger.debug("Stopped %s", self.origin)

    async def _serve(self, listener: Any, *, task_status=anyio.TASK_STATUS_IGNORED) -> None:
        self._limiter = anyio.CapacityLimiter(math.inf)
        with anyio.CancelScope() as scope:
            task_status.started(scope)
            async with listener:
                await listener.serve(self._handle_client)

    def _find_context(self, route: str) -> Handler | None:
        with self._contexts_lock:
            handler = self._contexts.get(route)
            if handler is not None:
                return handler
            best = None
            for path, candidate in self._contexts.items():
                if route.startswith(path.rstrip("/") + "/"):
                    if best is None or len(path) > len(best[0]):
                        best = (path, candidate)
            return best[1] if best else None

    async def _dispatch(self, request: HttpRequest) -> HttpResponse:
        handler = self._find_context(request.route)
        if handler is None:
            return HttpResponse.text("No context found for request", status=404)
        try:
            if _is_async(handler):
                response = await handler(request)
            else:
                response = await anyio.to_thread.run_sync(
                    handler, request, limiter=self._limiter, abandon_on_cancel=True
                )
                if inspect.isawaitable(response):
                    response = await response
            if not isinstance(response, HttpResponse):
                raise TypeError(f"handler returned {type(response).__name__}, not HttpResponse")
            return response
        except Exception as e:
            logger.exception("Handler for %s failed", request.route)
            return HttpResponse.text(f"handler error: {e!r}", status=500)

    async def _handle_client(self, stream: AnyByteStream) -> None:
        async with stream:
            try:
                header_block, rest = await _read_until(stream, b"\r\n\r\n")
                if not header_block:
                    return

                try:
                    method, path, version, headers = _parse_head(header_block)
                    body = await _read_body(stream, headers, rest)
                except ValueError as e:
                    await _write_response(stream, HttpResponse.text(f"bad request: {e}", status=400))
                    return

                req = HttpRequest(
                    method=method,
                    path=path,
                    version=version,
                    headers=headers,
                    body=body,
                )
                resp = await self._dispatch(req)
                await _write_response(stream, resp)
            except _IO_ERRORS as e:
                logger.debug("Connection dropped: %r", e)
            except Exception:
                logger.exception("Unexpected error while serving a connection")
