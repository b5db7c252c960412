"""pytest fixtures for simserve, registered through the ``pytest11`` entry point."""

from __future__ import annotations

import ssl
from typing import Iterator

import pytest

from .registry.local import ServerRegistry
from .tls import client_ssl_context


@pytest.fixture
def simserve_registry() -> Iterator[ServerRegistry]:
    """A private registry whose servers are stopped when the test ends."""
    registry = ServerRegistry()
    try:
        yield registry
    finally:
        registry.stop()


@pytest.fixture(scope="session")
def simserve_client_ssl() -> ssl.SSLContext:
    """Client TLS context that accepts the bundled test certificate."""
    return client_ssl_context()
