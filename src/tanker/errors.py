"""Custom exceptions for tanker.

This module defines typed exceptions for the storage backends and the
transfer protocol. The transfer agent decides what is fatal and what is
reported per object based on these types.
"""


class TankerError(RuntimeError):
    """Base class for all tanker errors."""
    pass


# Storage Errors
class StorageError(TankerError):
    """Base class for storage-related errors."""
    pass


class UnsupportedProtocolError(StorageError):
    """No storage backend handles the URL's protocol prefix."""

    def __init__(self, backend: str, url: str = ""):
        self.backend = backend
        self.url = url
        if url:
            super().__init__(f"{backend}: unsupported protocol for URL {url!r}")
        else:
            super().__init__(f"{backend}: unsupported protocol")


class ConfigError(StorageError):
    """Backend (or agent) configuration is missing or invalid."""
    pass


class InvalidAddressError(StorageError):
    """URL has the right prefix but is malformed (e.g. no bucket or host)."""

    def __init__(self, backend: str, url: str):
        self.backend = backend
        self.url = url
        super().__init__(f"{backend}: invalid URL {url!r}")


class NotFoundError(StorageError):
    """Object not found, or the lookup was ambiguous."""
    pass


class BackendError(StorageError):
    """Transport or protocol failure in a backend. Retryable."""

    def __init__(self, backend: str, action: str, url: str, cause: Exception = None):
        self.backend = backend
        self.action = action
        self.url = url
        self.cause = cause
        message = f"{backend}: {action} for URL {url!r}"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)


class CancelledError(StorageError):
    """The execution context was cancelled or its deadline passed."""

    def __init__(self, reason: str = "context cancelled"):
        self.reason = reason
        super().__init__(reason)


# Protocol Errors
class ProtocolError(TankerError):
    """Malformed or unexpected message from git-lfs."""
    pass
