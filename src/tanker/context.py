"""Cancellation-bearing execution context shared by a transfer session."""

import contextlib
import logging
import signal
import threading
import time
from typing import Iterator, List, Optional, Sequence

from .errors import CancelledError

logger = logging.getLogger(__name__)


class TransferContext:
    """Cancellation signal with an optional deadline.

    Contexts form a tree: cancelling a context cancels all of its children,
    while cancelling a child leaves the parent untouched. The session owns
    the root context; each progress observer gets a child that is cancelled
    when its transfer call returns.

    Deadlines are absolute ``time.monotonic()`` values.
    """

    def __init__(self, parent: Optional["TransferContext"] = None, deadline: Optional[float] = None):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._children: List["TransferContext"] = []
        self._reason = "context cancelled"
        self.parent = parent

        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self.deadline = deadline

        if parent is not None:
            parent._attach(self)

    def _attach(self, child: "TransferContext") -> None:
        with self._lock:
            if self._event.is_set():
                child.cancel(self._reason)
                return
            self._children.append(child)

    def _detach(self, child: "TransferContext") -> None:
        with self._lock:
            if child in self._children:
                self._children.remove(child)

    def child(self, timeout: Optional[float] = None) -> "TransferContext":
        """Create a child context, optionally with a timeout in seconds."""
        deadline = time.monotonic() + timeout if timeout is not None else None
        return TransferContext(parent=self, deadline=deadline)

    def cancel(self, reason: str = "context cancelled") -> None:
        """Cancel this context and every descendant. Idempotent."""
        with self._lock:
            if self._event.is_set():
                return
            self._reason = reason
            self._event.set()
            children = list(self._children)
            self._children.clear()
        for child in children:
            child.cancel(reason)
        if self.parent is not None:
            self.parent._detach(self)

    @property
    def cancelled(self) -> bool:
        """True once cancelled or past the deadline."""
        if self._event.is_set():
            return True
        if self.deadline is not None and time.monotonic() >= self.deadline:
            self.cancel("context deadline exceeded")
            return True
        return False

    def check(self) -> None:
        """Raise CancelledError if the context is done."""
        if self.cancelled:
            raise CancelledError(self._reason)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block up to ``timeout`` seconds; return True if cancelled meanwhile.

        The wait is cut short by the deadline, if one is set.
        """
        if self.deadline is not None:
            remaining = max(0.0, self.deadline - time.monotonic())
            timeout = remaining if timeout is None else min(timeout, remaining)
        self._event.wait(timeout)
        return self.cancelled

    def remaining(self) -> Optional[float]:
        """Seconds left until the deadline, or None without one."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())


def background() -> TransferContext:
    """Root context with no deadline."""
    return TransferContext()


@contextlib.contextmanager
def cancel_on_signals(
    ctx: TransferContext,
    signals: Sequence[int] = (signal.SIGINT, signal.SIGTERM),
) -> Iterator[TransferContext]:
    """
    Cancel ``ctx`` when one of ``signals`` arrives inside the block.

    Only the first signal is caught. Its handler puts the previous handlers
    back, so a second signal interrupts or terminates the process as usual.
    Must be entered from the main thread.
    """
    previous = {}

    def restore() -> None:
        for signum, handler in previous.items():
            signal.signal(signum, handler if handler is not None else signal.SIG_DFL)

    def on_signal(signum, frame) -> None:
        name = signal.Signals(signum).name
        logger.warning("Received %s, cancelling transfer", name)
        restore()
        ctx.cancel(f"received {name}")

    for signum in signals:
        previous[signum] = signal.signal(signum, on_signal)
    try:
        yield ctx
    finally:
        restore()
