"""Retry wrapper for storage backends."""

import logging
from dataclasses import dataclass
from typing import BinaryIO, Callable, Iterator, List, Optional, TypeVar

from ..config import RetryConfig
from ..context import TransferContext
from ..errors import BackendError, CancelledError
from ..storage_models import StorageObject
from .base import Storage
from .contextio import rewind

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with a cap and a bounded number of attempts."""
    max_attempts: int = 5
    initial_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0

    @classmethod
    def from_config(cls, conf: RetryConfig) -> "RetryPolicy":
        return cls(
            max_attempts=conf.max_attempts,
            initial_delay=conf.initial_delay,
            max_delay=conf.max_delay,
            multiplier=conf.multiplier,
        )

    def delays(self) -> Iterator[float]:
        """Delay before each retry; never decreasing, at most max_delay."""
        delay = self.initial_delay
        for _ in range(self.max_attempts - 1):
            yield min(delay, self.max_delay)
            delay *= self.multiplier


class StorageRetrier:
    """
    Storage wrapper that retries stat/list/get/put on ``BackendError``.

    Every other error (not found, bad URL, configuration, cancellation)
    is returned on the first attempt. Backoff waits on the context, so
    cancelling it ends the loop immediately.
    """

    def __init__(self, backend: Storage, policy: Optional[RetryPolicy] = None):
        self.backend = backend
        self.policy = policy or RetryPolicy()

    def retry(self, ctx: TransferContext, op: str, url: str,
              fn: Callable[[], T], before_retry: Optional[Callable[[], bool]] = None) -> T:
        """
        Run ``fn`` until it succeeds, fails permanently or attempts run out.

        Args:
            ctx: Transfer context; cancellation aborts the loop
            op: Operation name for logging
            url: URL for logging
            fn: Call to retry
            before_retry: Called before every retry (e.g. rewind streams);
                returning False stops retrying

        Returns:
            Result of ``fn``

        Raises:
            The last BackendError, or the first non-retryable error
        """
        delays = self.policy.delays()
        attempt = 1
        while True:
            ctx.check()
            try:
                return fn()
            except BackendError as e:
                delay = next(delays, None)
                if delay is None:
                    logger.error("%s %s failed after %d attempts: %s", op, url, attempt, e)
                    raise
                if before_retry is not None and not before_retry():
                    logger.error("%s %s failed and its stream can't be rewound, not retrying: %s",
                                 op, url, e)
                    raise
                logger.warning("%s %s failed (attempt %d/%d), retrying in %.1fs: %s",
                               op, url, attempt, self.policy.max_attempts, delay, e)
                if ctx.wait(delay):
                    raise CancelledError("cancelled while waiting to retry") from e
                attempt += 1

    def stat(self, ctx: TransferContext, url: str) -> StorageObject:
        return self.retry(ctx, "stat", url, lambda: self.backend.stat(ctx, url))

    def list(self, ctx: TransferContext, url: str) -> List[StorageObject]:
        return self.retry(ctx, "list", url, lambda: self.backend.list(ctx, url))

    def get(self, ctx: TransferContext, url: str, dest: BinaryIO) -> StorageObject:
        return self.retry(
            ctx, "get", url,
            lambda: self.backend.get(ctx, url, dest),
            before_retry=lambda: rewind(dest, truncate=True),
        )

    def put(self, ctx: TransferContext, url: str, src: BinaryIO) -> StorageObject:
        return self.retry(
            ctx, "put", url,
            lambda: self.backend.put(ctx, url, src),
            before_retry=lambda: rewind(src),
        )

    def join(self, url: str, path: str) -> str:
        return self.backend.join(url, path)
