"""Line-delimited JSON channel between git-lfs and the agent."""

import logging
import sys
import threading
from typing import TextIO

from .constants import TRANSFER_ERROR_CODE
from .messages import (
    CompleteMessage,
    ErrorDetail,
    ErrorMessage,
    InboundMessage,
    InitAck,
    OutboundMessage,
    ProgressMessage,
    TerminateMessage,
    parse_message,
    serialize_message,
)

logger = logging.getLogger(__name__)


class Comms:
    """
    Reads git-lfs requests and writes responses, one JSON object per line.

    Writes are serialized with a lock: the progress watcher thread and the
    session loop both send messages.
    """

    def __init__(self, input: TextIO, output: TextIO):
        self.input = input
        self.output = output
        self._write_lock = threading.Lock()

    @classmethod
    def stdio(cls) -> "Comms":
        return cls(sys.stdin, sys.stdout)

    def read_message(self) -> InboundMessage:
        """
        Block until the next message arrives.

        End of input is treated as terminate.

        Raises:
            ProtocolError: If the line can't be parsed
        """
        line = self.input.readline()
        if not line:
            logger.debug("End of input, terminating")
            return TerminateMessage()
        return parse_message(line)

    def send(self, msg: OutboundMessage) -> None:
        line = serialize_message(msg)
        with self._write_lock:
            self.output.write(line + "\n")
            self.output.flush()

    def send_init_ack(self) -> None:
        """Tell git-lfs the agent initialized successfully."""
        self.send(InitAck())

    def send_progress(self, oid: str, bytes_so_far: int, bytes_since_last: int) -> None:
        self.send(ProgressMessage(oid=oid, bytesSoFar=bytes_so_far, bytesSinceLast=bytes_since_last))

    def send_complete(self, oid: str, path: str = "") -> None:
        self.send(CompleteMessage(oid=oid, path=path))

    def send_error(self, oid: str, err: Exception, code: int = TRANSFER_ERROR_CODE) -> None:
        logger.info("Sending error for %s: %s", oid, err)
        self.send(ErrorMessage(oid=oid, error=ErrorDetail(code=code, message=str(err) or type(err).__name__)))
