"""Built-in request handlers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Sequence

from .server import HttpRequest, HttpResponse

ECHO_BODY_MARKER = "REQUEST BODY:"


@dataclass(frozen=True, slots=True)
class FixedResponseHandler:
    """Answers every request with the same status, headers and body."""
    status: int = 200
    headers: Mapping[str, Sequence[str]] | None = None
    content: bytes = b""

    async def __call__(self, request: HttpRequest) -> HttpResponse:
        return HttpResponse(status=self.status, headers=self.headers, body=self.content)


def render_echo(request: HttpRequest) -> str:
    """Render a request the way EchoHandler reports it.

    The body is decoded one byte per character, which is only faithful for
    ASCII payloads.
    """
    request_line = f"{request.method} {request.path} {request.version}\n"
    header_lines = "\n".join(
        f"{name}: " + "; ".join(value.strip() for value in values)
        for name, values in request.headers.items()
    )
    return request_line + header_lines + f"\n{ECHO_BODY_MARKER}\n" + request.body.decode("latin-1")


@dataclass(frozen=True, slots=True)
class EchoHandler:
    """Reflects method, target, protocol, headers and body back as text."""

    async def __call__(self, request: HttpRequest) -> HttpResponse:
        return HttpResponse(status=200, body=render_echo(request).encode("utf-8"))
