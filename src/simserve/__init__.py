"""On-demand HTTP/HTTPS endpoints for tests."""

from .errors import SimServeError, TLSIdentityError
from .http.headers import ParsedHeaders, parse_headers
from .http.server import Handler, HttpRequest, HttpResponse, ServerInstance
from .http.handlers import EchoHandler, FixedResponseHandler
from .tls import TLSIdentity, client_ssl_context, get_identity
from .endpoint import Endpoint, HandlerConfig
from .registry.local import LifecycleSlot, ServerRegistry, endpoint, register, stop

__all__ = [
    # Errors
    "SimServeError",
    "TLSIdentityError",
    # HTTP
    "ParsedHeaders",
    "parse_headers",
    "Handler",
    "HttpRequest",
    "HttpResponse",
    "ServerInstance",
    # Handlers
    "EchoHandler",
    "FixedResponseHandler",
    # TLS
    "TLSIdentity",
    "get_identity",
    "client_ssl_context",
    # Registration
    "Endpoint",
    "HandlerConfig",
    "LifecycleSlot",
    "ServerRegistry",
    "endpoint",
    "register",
    "stop",
]
