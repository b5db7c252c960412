"""Endpoint configuration and the fluent builder that registers it."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import TYPE_CHECKING, Iterable, Mapping

from typing_extensions import Self

from .http.handlers import EchoHandler, FixedResponseHandler
from .http.headers import normalize_headers, parse_headers
from .http.server import Handler

if TYPE_CHECKING:
    from .registry.local import ServerRegistry


def _check_header_text(text: str, what: str) -> None:
    # response heads are written as latin-1, one header per line
    if "\r" in text or "\n" in text:
        raise ValueError(f"{what} must not contain CR or LF")
    try:
        text.encode("iso-8859-1")
    except UnicodeEncodeError:
        raise ValueError(f"{what} is not latin-1 encodable") from None


@dataclass(frozen=True)
class HandlerConfig:
    """
    What one registration serves.

    Attributes:
        content: Body of the fixed response
        ssl: Register on the TLS instance instead of the plaintext one
        response_code: Status of the fixed response
        headers: Fixed response headers, name -> values
        handler: Custom handler; when set, content/response_code/headers are ignored
    """
    content: bytes = b""
    ssl: bool = False
    response_code: int = 200
    headers: Mapping[str, tuple[str, ...]] | None = None
    handler: Handler | None = None

    def __post_init__(self):
        """Validate the config."""
        if isinstance(self.response_code, bool) or not isinstance(self.response_code, int):
            raise ValueError(f"Response code must be an int, got {self.response_code!r}")
        if not 100 <= self.response_code <= 999:
            raise ValueError(f"Response code must have three digits, got {self.response_code}")
        if self.handler is not None and not callable(self.handler):
            raise ValueError(f"{self.handler!r} is not callable")
        for name, values in (self.headers or {}).items():
            _check_header_text(name, f"Header name {name!r}")
            for value in values:
                _check_header_text(value, f"Value {value!r} of header {name!r}")

    def build_handler(self) -> Handler:
        if self.handler is not None:
            return self.handler
        return FixedResponseHandler(
            status=self.response_code,
            headers=self.headers,
            content=self.content,
        )


def _freeze_headers(headers: Mapping[str, str | Iterable[str]]) -> Mapping[str, tuple[str, ...]]:
    return MappingProxyType({name: tuple(values) for name, values in normalize_headers(headers).items()})


@dataclass(frozen=True)
class Endpoint:
    """Fluent, immutable builder for one registration.

    Every ``with_*`` call returns a new Endpoint, so a partially configured
    builder can be shared and extended from several threads.

        url = registry.endpoint().with_content("ok").with_response_code(201).start()
    """
    registry: "ServerRegistry"
    config: HandlerConfig = field(default_factory=HandlerConfig)

    def _with(self, **changes) -> Self:
        return replace(self, config=replace(self.config, **changes))

    def with_content(self, content: bytes | str) -> Self:
        if isinstance(content, str):
            content = content.encode("utf-8")
        return self._with(content=bytes(content))

    def with_ssl(self, enabled: bool = True) -> Self:
        return self._with(ssl=enabled)

    def with_response_code(self, response_code: int) -> Self:
        return self._with(response_code=response_code)

    def with_headers(self, headers: str | Mapping[str, str | Iterable[str]]) -> Self:
        """Set response headers from raw ``Name: value`` text or a mapping."""
        if isinstance(headers, str):
            headers = parse_headers(headers)
        return self._with(headers=_freeze_headers(headers))

    def with_handler(self, handler: Handler) -> Self:
        return self._with(handler=handler)

    def start(self) -> str:
        """Register and return the URL that reaches this endpoint."""
        return self.registry.register(self.config)

    def start_echo(self) -> str:
        return self.with_handler(EchoHandler()).start()
