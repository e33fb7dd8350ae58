"""git-lfs standalone custom transfer agent.

The agent reads requests from git-lfs one at a time, moves the object
between the local data directory and remote storage, and reports progress
and the outcome back to git-lfs.

A failed transfer never ends the session: its error is reported to git-lfs
for that object and the agent moves on to the next request. This includes
requests that arrive before init or lack a field. Only unparsable input,
unknown events and backend construction failures are fatal.
"""

import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from .comms import Comms
from .config import TankerConfig
from .constants import PROGRESS_INTERVAL, UNEXPECTED_ERROR_CODE
from .context import TransferContext, background
from .errors import ConfigError, ProtocolError, StorageError
from .messages import (
    DownloadMessage,
    InboundMessage,
    InitMessage,
    TerminateMessage,
    UploadMessage,
)
from .progress import CountingReader, CountingWriter, ProgressWatcher
from .storage import RetryPolicy, Storage, StorageRetrier, make_storage
from .utils import ensure_dir, ensure_path

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    """Where a session is in the git-lfs protocol."""
    AWAITING_INIT = "awaiting_init"
    ACTIVE = "active"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class HandleResult:
    """Outcome of handling one message.

    Per-object failures are reported to git-lfs and still count as ``ok``;
    ``ok=False`` means the session can't continue.
    """
    ok: bool = True
    error: Optional[Exception] = None

    @classmethod
    def failure(cls, error: Exception) -> "HandleResult":
        return cls(ok=False, error=error)


class TransferAgent:
    """
    Runs one git-lfs transfer session.

    Args:
        store: Storage backend, usually wrapped in ``StorageRetrier``
        base_url: Remote directory URL objects are stored under
        data_dir: Local directory downloads are written to
        comms: Channel to git-lfs
        ctx: Session context; cancelling it aborts the in-flight transfer
        progress_interval: Seconds between progress reports
    """

    def __init__(
        self,
        store: Storage,
        base_url: str,
        data_dir: Union[str, Path],
        comms: Comms,
        ctx: Optional[TransferContext] = None,
        progress_interval: float = PROGRESS_INTERVAL,
    ):
        self.store = store
        self.base_url = base_url
        self.data_dir = Path(data_dir)
        self.comms = comms
        self.ctx = ctx or background()
        self.progress_interval = progress_interval
        self._state = SessionState.AWAITING_INIT

    @property
    def state(self) -> SessionState:
        return self._state

    def run(self) -> None:
        """
        Process messages until terminate (or end of input).

        Raises:
            ProtocolError: On unparsable input or an unexpected message
        """
        logger.info("Transfer session started for %s", self.base_url)
        while self._state != SessionState.TERMINATED:
            msg = self.comms.read_message()
            result = self.handle(msg)
            if not result.ok:
                logger.error("Transfer session aborted: %s", result.error)
                raise result.error
        logger.info("Transfer session finished")

    def handle(self, msg: InboundMessage) -> HandleResult:
        """Handle a single message. Never raises."""
        try:
            if isinstance(msg, InitMessage):
                return self._init(msg)

            if isinstance(msg, TerminateMessage):
                self._state = SessionState.TERMINATED
                return HandleResult()

            if isinstance(msg, (UploadMessage, DownloadMessage)):
                if self._state != SessionState.ACTIVE:
                    logger.warning("Received %s of %s before init", msg.event, msg.oid)
                    self.comms.send_error(
                        msg.oid, ProtocolError(f"received {msg.event} message before init")
                    )
                    return HandleResult()
                return self._transfer(msg)

            return HandleResult.failure(ProtocolError(f"unknown message type {msg!r}"))
        except Exception as e:
            logger.exception("Failed handling %s", type(msg).__name__)
            return HandleResult.failure(e)

    def _init(self, msg: InitMessage) -> HandleResult:
        if self._state != SessionState.AWAITING_INIT:
            logger.warning("Received init message twice, acknowledging again")
            self.comms.send_init_ack()
            return HandleResult()

        logger.info("Init: operation=%s remote=%s", msg.operation or "-", msg.remote or "-")
        self.comms.send_init_ack()
        self._state = SessionState.ACTIVE
        return HandleResult()

    def _transfer(self, msg: Union[UploadMessage, DownloadMessage]) -> HandleResult:
        """Run one upload/download, reporting any failure against its oid."""
        try:
            if not msg.oid:
                raise ValueError(f"{msg.event} message has no oid")
            if isinstance(msg, UploadMessage):
                self._upload(msg)
            else:
                self._download(msg)
        except (StorageError, OSError, ValueError) as e:
            logger.warning("%s of %s failed: %s", msg.event.capitalize(), msg.oid, e)
            self.comms.send_error(msg.oid, e)
        except Exception as e:
            logger.exception("Unexpected error during %s of %s", msg.event, msg.oid)
            self.comms.send_error(msg.oid, e, code=UNEXPECTED_ERROR_CODE)
        return HandleResult()

    def _upload(self, msg: UploadMessage) -> None:
        if not msg.path:
            raise ValueError(f"upload message for {msg.oid} has no path")
        url = self.store.join(self.base_url, msg.oid)
        logger.info("Uploading %s to %s (%d bytes)", msg.path, url, msg.size)

        with open(msg.path, "rb") as src:
            reader = CountingReader(src)
            with self._watch(msg.oid, reader):
                self.store.put(self.ctx, url, reader)

        self.comms.send_complete(msg.oid, "")

    def _download(self, msg: DownloadMessage) -> None:
        # git-lfs moves the file out of the data directory itself.
        path = self.local_path(msg.oid)
        url = self.store.join(self.base_url, msg.oid)
        logger.info("Downloading %s to %s (%d bytes)", url, path, msg.size)

        ensure_path(path)
        try:
            with open(path, "wb") as dest:
                writer = CountingWriter(dest)
                with self._watch(msg.oid, writer):
                    self.store.get(self.ctx, url, writer)
        except BaseException:
            self._remove_partial(path)
            raise

        self.comms.send_complete(msg.oid, str(path))

    def local_path(self, oid: str) -> Path:
        """
        Absolute download path for an oid inside the data directory.

        Raises:
            ValueError: If the oid would place the file outside it
        """
        data_dir = Path(os.path.abspath(self.data_dir))
        path = Path(os.path.abspath(data_dir / oid))
        if path.parent != data_dir:
            raise ValueError(f"Invalid oid {oid!r}: resolves outside the data directory")
        return path

    def _watch(self, oid: str, counter) -> ProgressWatcher:
        return ProgressWatcher(
            self.ctx,
            counter,
            lambda total, since_last: self.comms.send_progress(oid, total, since_last),
            interval=self.progress_interval,
        )

    def _remove_partial(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove partial download %s: %s", path, e)


def build_store(config: TankerConfig) -> StorageRetrier:
    """
    Create the retry-wrapped backend for ``config.base_url``.

    Raises:
        ConfigError: If base_url is missing or the backend is misconfigured
        UnsupportedProtocolError: If no backend handles base_url
    """
    if not config.base_url:
        raise ConfigError("config base_url is required")
    backend = make_storage(config.base_url, config.storage)
    return StorageRetrier(backend, RetryPolicy.from_config(config.retry))


def run_transfer(config: TankerConfig, comms: Comms, ctx: Optional[TransferContext] = None) -> None:
    """
    Run a full session: build the backend, then serve git-lfs until terminate.

    Backend construction errors are raised before any message is read.
    """
    store = build_store(config)
    ensure_dir(config.data_dir)
    agent = TransferAgent(store, config.base_url, config.data_dir, comms, ctx=ctx)
    agent.run()
