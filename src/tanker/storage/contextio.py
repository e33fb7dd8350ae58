"""Byte streams that stop promptly when a transfer context is cancelled."""

import io
import logging
import time
from typing import BinaryIO

from ..context import TransferContext

logger = logging.getLogger(__name__)


def _apply_deadline(ctx: TransferContext, stream, setter: str) -> None:
    """Push the context deadline down into the stream, if it takes one.

    Streams may expose ``set_read_deadline``/``set_write_deadline`` taking
    an absolute wall-clock time, or a socket-style ``settimeout``.
    """
    remaining = ctx.remaining()
    if remaining is None:
        return
    if hasattr(stream, setter):
        getattr(stream, setter)(time.time() + remaining)
    elif hasattr(stream, "settimeout"):
        stream.settimeout(remaining)


class ContextReader(io.RawIOBase):
    """
    Reader that checks the context before and after every read.

    A read that completes after cancellation still raises, so a long copy
    loop stops on the next chunk rather than at end of stream.
    """

    def __init__(self, ctx: TransferContext, stream: BinaryIO):
        super().__init__()
        self.ctx = ctx
        self.stream = stream
        _apply_deadline(ctx, stream, "set_read_deadline")

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        self.ctx.check()
        data = self.stream.read(size)
        self.ctx.check()
        return data

    def readinto(self, b) -> int:
        data = self.read(len(b))
        n = len(data)
        b[:n] = data
        return n

    def seekable(self) -> bool:
        return _seekable(self.stream)

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        return self.stream.seek(offset, whence)

    def tell(self) -> int:
        return self.stream.tell()


class ContextWriter(io.RawIOBase):
    """Writer that checks the context before and after every write."""

    def __init__(self, ctx: TransferContext, stream: BinaryIO):
        super().__init__()
        self.ctx = ctx
        self.stream = stream
        _apply_deadline(ctx, stream, "set_write_deadline")

    def writable(self) -> bool:
        return True

    def write(self, b) -> int:
        self.ctx.check()
        n = self.stream.write(b)
        self.ctx.check()
        return len(b) if n is None else n

    def flush(self) -> None:
        if hasattr(self.stream, "flush"):
            self.stream.flush()

    def seekable(self) -> bool:
        return _seekable(self.stream)

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        return self.stream.seek(offset, whence)

    def tell(self) -> int:
        return self.stream.tell()

    def truncate(self, size=None) -> int:
        return self.stream.truncate(size)


def _seekable(stream) -> bool:
    try:
        return bool(stream.seekable())
    except (AttributeError, ValueError):
        return False


def rewind(stream, truncate: bool = False) -> bool:
    """
    Seek a stream back to offset 0 if it supports it.

    Args:
        stream: Source or sink to rewind
        truncate: Also drop anything already written (sinks)

    Returns:
        True if the stream was rewound
    """
    if not _seekable(stream):
        return False
    stream.seek(0)
    if truncate:
        stream.truncate(0)
    logger.debug("Rewound stream %r", stream)
    return True
