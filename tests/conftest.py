"""Shared test fixtures and utilities."""

import io
import json
from typing import List, Union

import pytest

from tanker.comms import Comms
from tanker.config import LocalConfig
from tanker.context import TransferContext
from tanker.errors import BackendError
from tanker.storage.fs import FilesystemStorage
from tanker.storage.retry import RetryPolicy, StorageRetrier
from tanker.transfer import TransferAgent


class FlakyStorage:
    """Wraps a backend and fails the first ``failures`` calls of each operation."""

    def __init__(self, backend, failures: int = 1, error=None):
        self.backend = backend
        self.failures = failures
        self.error = error
        self.calls = {"stat": 0, "list": 0, "get": 0, "put": 0}

    def _maybe_fail(self, op: str, url: str):
        self.calls[op] += 1
        if self.calls[op] <= self.failures:
            raise self.error or BackendError("flaky", op, url, ConnectionError("connection reset"))

    def stat(self, ctx, url):
        self._maybe_fail("stat", url)
        return self.backend.stat(ctx, url)

    def list(self, ctx, url):
        self._maybe_fail("list", url)
        return self.backend.list(ctx, url)

    def get(self, ctx, url, dest):
        self._maybe_fail("get", url)
        return self.backend.get(ctx, url, dest)

    def put(self, ctx, url, src):
        # Consume part of the source first, like a connection dropped mid-upload.
        if self.calls["put"] < self.failures:
            src.read(2)
        self._maybe_fail("put", url)
        return self.backend.put(ctx, url, src)

    def join(self, url, path):
        return self.backend.join(url, path)


@pytest.fixture
def ctx():
    """Fresh session context."""
    return TransferContext()


@pytest.fixture
def remote_dir(tmp_path):
    """Directory acting as the remote store for file:// URLs."""
    d = tmp_path / "remote"
    d.mkdir()
    return d


@pytest.fixture
def base_url(remote_dir):
    return f"file://{remote_dir}"


@pytest.fixture
def local_store():
    return FilesystemStorage(LocalConfig())


@pytest.fixture
def fast_policy():
    """Retry policy without real backoff delays."""
    return RetryPolicy(max_attempts=3, initial_delay=0.0, max_delay=0.0)


@pytest.fixture
def write_file(tmp_path):
    """Factory fixture to write binary files relative to tmp_path."""
    def _write(path: str, content: bytes = b"test content"):
        file_path = tmp_path / path
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_bytes(content)
        return file_path
    return _write


@pytest.fixture
def run_session(tmp_path, local_store, base_url, fast_policy):
    """Factory fixture running a whole session over in-memory streams.

    Messages may be dicts (JSON-encoded) or raw strings. Returns the agent
    and the decoded output lines.
    """
    def _run(messages: List[Union[dict, str]], store=None, ctx=None):
        lines = [m if isinstance(m, str) else json.dumps(m) for m in messages]
        out = io.StringIO()
        comms = Comms(io.StringIO("".join(line + "\n" for line in lines)), out)
        agent = TransferAgent(
            store or StorageRetrier(local_store, fast_policy),
            base_url,
            tmp_path / "data",
            comms,
            ctx=ctx,
            progress_interval=0.01,
        )
        try:
            agent.run()
        finally:
            _run.output = [json.loads(line) for line in out.getvalue().splitlines()]
        return agent, _run.output
    _run.output = []
    return _run


@pytest.fixture
def flaky_storage():
    """The FlakyStorage class, for wrapping a backend in a test."""
    return FlakyStorage
