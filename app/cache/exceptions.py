"""
Cache layer exceptions.

Infrastructure failures are wrapped in CacheBackendError so the manager can
fail open without catching arbitrary exceptions raised by producers.
"""


class CacheError(Exception):
    """Base class for cache layer errors."""


class CacheBackendError(CacheError):
    """The cache or lock store could not be reached or returned garbage."""

    def __init__(self, operation: str, key: str, message: str = ""):
        self.operation = operation
        self.key = key
        detail = f"{operation} failed for {key}"
        if message:
            detail = f"{detail}: {message}"
        super().__init__(detail)


class CapabilityNotSupported(CacheError):
    """An optional store capability was used on a backend that lacks it."""

    def __init__(self, capability: str, backend: str):
        self.capability = capability
        self.backend = backend
        super().__init__(f"{backend} does not support {capability}")
