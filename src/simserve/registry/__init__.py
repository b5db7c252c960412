"""Server registry with lazily started plaintext and TLS instances."""

from .local import LifecycleSlot, ServerRegistry, endpoint, register, stop

__all__ = [
    "LifecycleSlot",
    "ServerRegistry",
    "endpoint",
    "register",
    "stop",
]
