"""Server registry: lazily started server instances and context path allocation."""

from __future__ import annotations

import logging
import ssl
import threading
from typing import Callable, Optional

from ..endpoint import Endpoint, HandlerConfig
from ..http.server import Handler, ServerInstance
from ..tls import get_identity

logger = logging.getLogger(__name__)

InstanceFactory = Callable[..., ServerInstance]


class LifecycleSlot:
    """
    Holds at most one live ServerInstance for one protocol.

    States are absent (no instance) and running. ensure() moves absent to
    running, stop() moves running to absent; both are serialized by the
    slot's own lock.
    """

    def __init__(self, name: str, start: Callable[[], ServerInstance]):
        self.name = name
        self._start = start
        self._instance: Optional[ServerInstance] = None
        self._lock = threading.Lock()

    @property
    def instance(self) -> Optional[ServerInstance]:
        with self._lock:
            return self._instance

    @property
    def running(self) -> bool:
        return self.instance is not None

    def _ensure_locked(self) -> ServerInstance:
        if self._instance is None:
            # a failed start leaves the slot absent
            self._instance = self._start()
            logger.info("Started %s server at %s", self.name, self._instance.origin)
        return self._instance

    def ensure(self) -> ServerInstance:
        """Return the live instance, starting one if the slot is absent."""
        with self._lock:
            return self._ensure_locked()

    def mount(self, allocate_path: Callable[[], str], handler: Handler) -> str:
        """Start if needed, mount handler at a fresh path and return the full URL.

        The path is only allocated once the instance is running.
        """
        with self._lock:
            instance = self._ensure_locked()
            path = allocate_path()
            instance.add_context(path, handler)
            return instance.origin + path

    def stop(self) -> None:
        with self._lock:
            instance, self._instance = self._instance, None
        if instance is not None:
            instance.stop()
            logger.info("Stopped %s server at %s", self.name, instance.origin)


class ServerRegistry:
    """
    Thread-safe registry of one plaintext and one TLS server instance.

    Every registration gets a fresh context path ("/0", "/1", ...). The
    counter survives stop(), so a path is never handed out twice by the
    same registry.
    """

    def __init__(
        self,
        *,
        host: str = "127.0.0.1",
        instance_factory: InstanceFactory = ServerInstance,
    ):
        self._host = host
        self._instance_factory = instance_factory
        self._plain = LifecycleSlot("http", self._start_plain)
        self._tls = LifecycleSlot("https", self._start_tls)
        self._next_context = 0
        self._counter_lock = threading.Lock()

    def _start_plain(self) -> ServerInstance:
        return self._instance_factory(host=self._host)

    def _start_tls(self) -> ServerInstance:
        context: ssl.SSLContext = get_identity().context
        return self._instance_factory(ssl_context=context, host=self._host)

    def _slot(self, use_ssl: bool) -> LifecycleSlot:
        return self._tls if use_ssl else self._plain

    def _allocate_path(self) -> str:
        with self._counter_lock:
            path = f"/{self._next_context}"
            self._next_context += 1
            return path

    def endpoint(self) -> Endpoint:
        """Start building an endpoint on this registry."""
        return Endpoint(registry=self)

    def register(self, config: HandlerConfig) -> str:
        """
        Mount the handler described by config and return its URL.

        Raises OSError if a needed server cannot bind; the slot then stays
        absent and no path is used up.
        """
        url = self._slot(config.ssl).mount(self._allocate_path, config.build_handler())
        logger.debug("Registered %s", url)
        return url

    def instance(self, use_ssl: bool = False) -> Optional[ServerInstance]:
        """Return the live instance for a protocol, or None."""
        return self._slot(use_ssl).instance

    def stop(self) -> None:
        """Stop both instances. Safe to call when nothing is running."""
        self._plain.stop()
        self._tls.stop()


# Global registry instance
_global_registry = ServerRegistry()


def endpoint() -> Endpoint:
    """Start building an endpoint on the global registry."""
    return _global_registry.endpoint()


def register(config: HandlerConfig) -> str:
    """Register a handler config on the global registry."""
    return _global_registry.register(config)


def stop() -> None:
    """Stop the global registry's server instances."""
    _global_registry.stop()
