"""Storage package: backend contract, implementations and wrappers."""

from .base import Storage
from .factory import make_storage
from .retry import RetryPolicy, StorageRetrier

__all__ = ["Storage", "make_storage", "RetryPolicy", "StorageRetrier"]
