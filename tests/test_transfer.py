"""Tests for the transfer session handler."""

import io
import json

import pytest

from tanker.comms import Comms
from tanker.config import TankerConfig
from tanker.context import background
from tanker.errors import BackendError, ConfigError, ProtocolError, UnsupportedProtocolError
from tanker.messages import DownloadMessage, InitMessage, UploadMessage
from tanker.storage.retry import StorageRetrier
from tanker.transfer import SessionState, TransferAgent, build_store, run_transfer

INIT = {"event": "init", "operation": "upload", "remote": "origin", "concurrent": False}
TERMINATE = {"event": "terminate"}


class BrokenStorage:
    """Backend whose every call fails."""

    def __init__(self, error=None):
        self.error = error
        self.calls = 0

    def _fail(self, url):
        self.calls += 1
        raise self.error or BackendError("broken", "connecting", url, ConnectionError("unreachable"))

    def stat(self, ctx, url):
        self._fail(url)

    def list(self, ctx, url):
        self._fail(url)

    def get(self, ctx, url, dest):
        self._fail(url)

    def put(self, ctx, url, src):
        self._fail(url)

    def join(self, url, path):
        return f"{url}/{path}"


class Tripwire(io.RawIOBase):
    """Source that cancels the session after its first read."""

    def __init__(self, src, ctx):
        super().__init__()
        self.src = src
        self.ctx = ctx

    def readable(self):
        return True

    def read(self, size=-1):
        data = self.src.read(size)
        self.ctx.cancel("interrupted")
        return data


class TripwireSink(io.RawIOBase):
    """Sink that cancels the session after its first write."""

    def __init__(self, dest, ctx):
        super().__init__()
        self.dest = dest
        self.ctx = ctx

    def writable(self):
        return True

    def write(self, b):
        n = self.dest.write(b)
        self.ctx.cancel("interrupted")
        return n


class CancellingStorage:
    """Wraps a backend so the session is cancelled mid-transfer."""

    def __init__(self, backend, ctx):
        self.backend = backend
        self.ctx = ctx
        self.sources = []

    def put(self, ctx, url, src):
        self.sources.append(src)
        return self.backend.put(ctx, url, Tripwire(src, self.ctx))

    def get(self, ctx, url, dest):
        self.sources.append(dest)
        return self.backend.get(ctx, url, TripwireSink(dest, self.ctx))

    def join(self, url, path):
        return self.backend.join(url, path)


def events(output, oid=None):
    return [m.get("event") for m in output if oid is None or m.get("oid") == oid]


def assert_well_formed(output, oid, size=None):
    """Progress is non-decreasing and followed by exactly one terminal message."""
    mine = [m for m in output if m.get("oid") == oid]
    terminal = [m for m in mine if m["event"] in ("complete", "error")]
    assert len(terminal) == 1
    assert mine[-1] is terminal[0]

    progress = [m for m in mine if m["event"] == "progress"]
    totals = [m["bytesSoFar"] for m in progress]
    assert totals == sorted(totals)
    for prev, cur in zip([0] + totals, progress):
        assert cur["bytesSinceLast"] == cur["bytesSoFar"] - prev
    if size is not None and terminal[0]["event"] == "complete":
        assert totals and totals[-1] == size


class TestSessionLifecycle:
    """Init, terminate and protocol errors."""

    def test_init_acknowledged(self, run_session):
        agent, output = run_session([{"event": "init"}, TERMINATE])
        assert output == [{}]
        assert agent.state == SessionState.TERMINATED

    def test_terminate_writes_nothing(self, run_session):
        _, output = run_session([INIT, TERMINATE, {"event": "download", "oid": "never-read"}])
        assert output == [{}]

    def test_end_of_input_terminates(self, run_session):
        agent, output = run_session([INIT])
        assert output == [{}]
        assert agent.state == SessionState.TERMINATED

    def test_unknown_event_is_fatal(self, run_session):
        with pytest.raises(ProtocolError, match="unknown message type"):
            run_session([INIT, {"event": "bogus"}])
        assert run_session.output == [{}]

    def test_malformed_line_is_fatal(self, run_session):
        with pytest.raises(ProtocolError):
            run_session([INIT, "{not json"])

    def test_transfer_before_init_reports_error(self, run_session, remote_dir):
        """A request before init fails on its own; the session carries on."""
        (remote_dir / "abc").write_bytes(b"data")

        agent, output = run_session([{"event": "download", "oid": "abc"}, INIT, TERMINATE])

        assert output[0] == {
            "event": "error",
            "oid": "abc",
            "error": {"code": 1, "message": "received download message before init"},
        }
        assert output[1:] == [{}]
        assert agent.state == SessionState.TERMINATED

    def test_second_init_acknowledged_again(self, run_session, remote_dir):
        (remote_dir / "abc").write_bytes(b"data")

        _, output = run_session([INIT, INIT, {"event": "download", "oid": "abc"}, TERMINATE])

        assert output[:2] == [{}, {}]
        assert output[-1]["event"] == "complete"


class TestUpload:
    """Upload requests."""

    def test_upload(self, run_session, write_file, remote_dir):
        src = write_file("work/f", b"test")

        _, output = run_session([
            INIT,
            {"event": "upload", "oid": "abc123", "size": 4, "path": str(src)},
            TERMINATE,
        ])

        assert output[0] == {}
        assert output[-1] == {"event": "complete", "oid": "abc123", "path": ""}
        assert output[-2] == {"event": "progress", "oid": "abc123", "bytesSoFar": 4, "bytesSinceLast": 4}
        assert_well_formed(output, "abc123", size=4)
        assert (remote_dir / "abc123").read_bytes() == b"test"

    def test_large_upload_progress(self, run_session, write_file, remote_dir):
        data = bytes(range(256)) * 2048
        src = write_file("work/big", data)

        _, output = run_session([INIT, {"event": "upload", "oid": "big", "size": len(data), "path": str(src)}])

        assert_well_formed(output, "big", size=len(data))
        assert events(output, "big")[-1] == "complete"
        assert (remote_dir / "big").read_bytes() == data

    def test_unreachable_backend_reports_one_error(self, run_session, write_file, fast_policy):
        """A failing upload is reported once and the session carries on."""
        src = write_file("work/f", b"test")
        backend = BrokenStorage()

        _, output = run_session([
            INIT,
            {"event": "upload", "oid": "abc123", "size": 4, "path": str(src)},
            {"event": "upload", "oid": "def456", "size": 4, "path": str(src)},
            TERMINATE,
        ], store=StorageRetrier(backend, fast_policy))

        errors = [m for m in output if m["event"] == "error"]
        assert [e["oid"] for e in errors] == ["abc123", "def456"]
        assert errors[0]["error"]["code"] == 1
        assert "unreachable" in errors[0]["error"]["message"]
        assert backend.calls == 2 * fast_policy.max_attempts
        assert_well_formed(output, "abc123")

    def test_missing_local_file(self, run_session, tmp_path):
        _, output = run_session([
            INIT,
            {"event": "upload", "oid": "abc", "size": 4, "path": str(tmp_path / "missing")},
            TERMINATE,
        ])
        assert events(output)[1:] == ["error"]
        assert output[1]["oid"] == "abc"
        assert output[1]["error"]["code"] == 1

    def test_upload_without_path(self, run_session, write_file, remote_dir):
        """A request missing its path fails alone; later requests still run."""
        src = write_file("work/f", b"test")

        _, output = run_session([
            INIT,
            {"event": "upload", "oid": "abc123", "size": 4},
            {"event": "upload", "oid": "def456", "size": 4, "path": str(src)},
            TERMINATE,
        ])

        errors = [m for m in output if m["event"] == "error"]
        assert len(errors) == 1
        assert errors[0]["oid"] == "abc123"
        assert errors[0]["error"]["code"] == 1
        assert "no path" in errors[0]["error"]["message"]
        assert output[-1] == {"event": "complete", "oid": "def456", "path": ""}
        assert (remote_dir / "def456").read_bytes() == b"test"

    def test_upload_without_oid(self, run_session, write_file, remote_dir):
        src = write_file("work/f", b"test")

        _, output = run_session([INIT, {"event": "upload", "size": 4, "path": str(src)}, TERMINATE])

        assert output[-1] == {"event": "error", "oid": "", "error": {"code": 1, "message": "upload message has no oid"}}
        assert list(remote_dir.iterdir()) == []

    def test_unexpected_error_uses_code_2(self, run_session, write_file):
        src = write_file("work/f", b"test")
        _, output = run_session([
            INIT,
            {"event": "upload", "oid": "abc", "size": 4, "path": str(src)},
        ], store=BrokenStorage(error=RuntimeError("bug")))

        assert output[-1] == {"event": "error", "oid": "abc", "error": {"code": 2, "message": "bug"}}

    def test_cancel_mid_upload(self, run_session, write_file, local_store, remote_dir):
        """Cancelling the session stops the upload before the source is exhausted."""
        data = b"x" * (1024 * 1024)
        src = write_file("work/big", data)
        ctx = background()
        store = CancellingStorage(local_store, ctx)

        _, output = run_session([
            INIT,
            {"event": "upload", "oid": "big", "size": len(data), "path": str(src)},
        ], store=store, ctx=ctx)

        assert output[-1]["event"] == "error"
        assert output[-1]["oid"] == "big"
        assert store.sources[0].n < len(data)
        assert not (remote_dir / "big").exists()
        assert_well_formed(output, "big")


class TestDownload:
    """Download requests."""

    def test_download(self, run_session, remote_dir, tmp_path):
        (remote_dir / "abc123").write_bytes(b"remote data")

        _, output = run_session([INIT, {"event": "download", "oid": "abc123", "size": 11}, TERMINATE])

        local = tmp_path / "data" / "abc123"
        assert output[-1] == {"event": "complete", "oid": "abc123", "path": str(local)}
        assert local.read_bytes() == b"remote data"
        assert_well_formed(output, "abc123", size=11)

    def test_missing_object_continues(self, run_session, remote_dir, tmp_path):
        """A failed download leaves no partial file and later requests still run."""
        (remote_dir / "there").write_bytes(b"ok")

        _, output = run_session([
            INIT,
            {"event": "download", "oid": "missing"},
            {"event": "download", "oid": "there"},
            TERMINATE,
        ])

        assert output[1]["event"] == "error"
        assert output[1]["oid"] == "missing"
        assert "not found" in output[1]["error"]["message"]
        assert not (tmp_path / "data" / "missing").exists()
        assert output[-1]["event"] == "complete"
        assert output[-1]["oid"] == "there"

    def test_retried_download_is_not_duplicated(self, run_session, remote_dir, local_store,
                                                flaky_storage, fast_policy, tmp_path):
        (remote_dir / "abc").write_bytes(b"payload")
        store = StorageRetrier(flaky_storage(local_store, failures=1), fast_policy)

        _, output = run_session([INIT, {"event": "download", "oid": "abc"}], store=store)

        assert output[-1]["event"] == "complete"
        assert (tmp_path / "data" / "abc").read_bytes() == b"payload"

    def test_cancel_mid_download(self, run_session, local_store, remote_dir, tmp_path):
        data = b"y" * (1024 * 1024)
        (remote_dir / "big").write_bytes(data)
        ctx = background()
        store = CancellingStorage(local_store, ctx)

        _, output = run_session([INIT, {"event": "download", "oid": "big"}], store=store, ctx=ctx)

        assert output[-1]["event"] == "error"
        assert store.sources[0].n < len(data)
        assert not (tmp_path / "data" / "big").exists()
        assert_well_formed(output, "big")

    @pytest.mark.parametrize("oid", ["../escape", "a/b", ".."])
    def test_oid_outside_data_dir(self, run_session, oid):
        _, output = run_session([INIT, {"event": "download", "oid": oid}])
        assert output[-1]["event"] == "error"
        assert "outside the data directory" in output[-1]["error"]["message"]


class TestHandle:
    """Direct calls to TransferAgent.handle."""

    def make_agent(self, tmp_path, store):
        out = io.StringIO()
        agent = TransferAgent(store, "file:///nowhere", tmp_path / "data", Comms(io.StringIO(), out))
        return agent, out

    def test_handle_never_raises(self, tmp_path):
        agent, out = self.make_agent(tmp_path, BrokenStorage())
        assert agent.handle(InitMessage()).ok
        result = agent.handle(DownloadMessage(oid="abc"))
        assert result.ok
        assert json.loads(out.getvalue().splitlines()[-1])["event"] == "error"

    def test_handle_before_init(self, tmp_path):
        agent, out = self.make_agent(tmp_path, BrokenStorage())
        result = agent.handle(UploadMessage(oid="abc", path="/tmp/x"))
        assert result.ok
        assert json.loads(out.getvalue())["error"]["message"] == "received upload message before init"
        assert agent.state == SessionState.AWAITING_INIT


class TestBuildStore:

    def test_requires_base_url(self):
        with pytest.raises(ConfigError, match="base_url"):
            build_store(TankerConfig())

    def test_unsupported_base_url(self):
        with pytest.raises(UnsupportedProtocolError):
            build_store(TankerConfig(base_url="s3://bucket"))

    def test_retry_policy_from_config(self):
        store = build_store(TankerConfig.model_validate({
            "base_url": "file:///srv/lfs",
            "retry": {"max_attempts": 2},
        }))
        assert store.policy.max_attempts == 2

    def test_run_transfer(self, tmp_path, remote_dir, base_url):
        (remote_dir / "abc").write_bytes(b"hi")
        config = TankerConfig(base_url=base_url, data_dir=str(tmp_path / "downloads"))
        lines = [json.dumps(INIT), json.dumps({"event": "download", "oid": "abc"}), json.dumps(TERMINATE)]
        out = io.StringIO()

        run_transfer(config, Comms(io.StringIO("\n".join(lines) + "\n"), out))

        last = json.loads(out.getvalue().splitlines()[-1])
        assert last == {"event": "complete", "oid": "abc", "path": str(tmp_path / "downloads" / "abc")}
