"""Exceptions raised by simserve."""


class SimServeError(Exception):
    """Base class for simserve errors."""
    pass


class TLSIdentityError(SimServeError):
    """Raised when the bundled TLS key material cannot be loaded."""
    pass
