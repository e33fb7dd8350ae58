"""Byte counting streams and the progress observer for transfers."""

import io
import logging
import threading
from typing import BinaryIO, Callable

from .constants import PROGRESS_INTERVAL
from .context import TransferContext

logger = logging.getLogger(__name__)

# Called with (bytes_so_far, bytes_since_last)
ProgressCallback = Callable[[int, int], None]


class _Counter:
    def __init__(self):
        self._lock = threading.Lock()
        self._n = 0

    def add(self, n: int) -> None:
        with self._lock:
            self._n += n

    @property
    def n(self) -> int:
        """Bytes transferred so far. Never decreases."""
        with self._lock:
            return self._n


class CountingReader(_Counter, io.RawIOBase):
    """Reader that counts the bytes read through it."""

    def __init__(self, stream: BinaryIO):
        _Counter.__init__(self)
        io.RawIOBase.__init__(self)
        self.stream = stream

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        data = self.stream.read(size)
        self.add(len(data))
        return data

    def readinto(self, b) -> int:
        data = self.read(len(b))
        n = len(data)
        b[:n] = data
        return n

    def seekable(self) -> bool:
        return self.stream.seekable()

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        return self.stream.seek(offset, whence)

    def tell(self) -> int:
        return self.stream.tell()


class CountingWriter(_Counter, io.RawIOBase):
    """Writer that counts the bytes written through it."""

    def __init__(self, stream: BinaryIO):
        _Counter.__init__(self)
        io.RawIOBase.__init__(self)
        self.stream = stream

    def writable(self) -> bool:
        return True

    def write(self, b) -> int:
        n = self.stream.write(b)
        n = len(b) if n is None else n
        self.add(n)
        return n

    def flush(self) -> None:
        self.stream.flush()

    def seekable(self) -> bool:
        return self.stream.seekable()

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        return self.stream.seek(offset, whence)

    def tell(self) -> int:
        return self.stream.tell()

    def truncate(self, size=None) -> int:
        return self.stream.truncate(size)


class ProgressWatcher:
    """
    Samples a byte counter on a background thread and reports progress.

    The watcher runs on a child of the session context. ``stop()`` cancels
    that child, waits for the thread, then flushes one last sample if the
    counter moved, so the final report always carries the total and no
    report arrives after ``stop()`` returns.

    Usable as a context manager around a single transfer call.
    """

    def __init__(self, ctx: TransferContext, counter: _Counter, callback: ProgressCallback,
                 interval: float = PROGRESS_INTERVAL):
        self.ctx = ctx.child()
        self.counter = counter
        self.callback = callback
        self.interval = interval
        self._last = 0
        self._emit_lock = threading.Lock()
        self._thread = threading.Thread(target=self._run, name="tanker-progress", daemon=True)

    def start(self) -> "ProgressWatcher":
        self._thread.start()
        return self

    def stop(self) -> None:
        self.ctx.cancel("transfer finished")
        if self._thread.is_alive():
            self._thread.join()
        self._sample()

    def __enter__(self) -> "ProgressWatcher":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def _run(self) -> None:
        while not self.ctx.wait(self.interval):
            self._sample()

    def _sample(self) -> None:
        with self._emit_lock:
            total = self.counter.n
            if total == self._last:
                return
            since_last = total - self._last
            self._last = total
            try:
                self.callback(total, since_last)
            except Exception:
                # A failed progress report must not abort the transfer.
                logger.exception("Progress callback failed")
