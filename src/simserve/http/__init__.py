"""HTTP plumbing: header parsing, the server instance and built-in handlers."""

from .headers import ParsedHeaders, normalize_headers, parse_headers
from .server import Handler, HttpRequest, HttpResponse, ServerInstance
from .handlers import EchoHandler, FixedResponseHandler

__all__ = [
    "ParsedHeaders",
    "parse_headers",
    "normalize_headers",
    "Handler",
    "HttpRequest",
    "HttpResponse",
    "ServerInstance",
    "EchoHandler",
    "FixedResponseHandler",
]
