"""FTP storage implementation."""

import contextlib
import ftplib
import logging
import posixpath
from datetime import datetime, timezone
from typing import BinaryIO, Iterator, List, Optional, Tuple
from urllib.parse import urlsplit

from ..config import FTPConfig
from ..constants import FTP_DEFAULT_PORT, FTP_PROTOCOL
from ..context import TransferContext
from ..errors import BackendError, InvalidAddressError, NotFoundError, UnsupportedProtocolError
from ..storage_models import StorageObject, join_url
from .contextio import ContextReader, ContextWriter

logger = logging.getLogger(__name__)

BACKEND = "ftpStorage"

# MLSD "type" facts
_FILE = "file"
_DIR = "dir"
_SKIP_DIRS = ("cdir", "pdir")


def is_unavailable(err: Exception) -> bool:
    """True for a "550 file unavailable" reply (missing path, or already exists)."""
    return isinstance(err, ftplib.error_perm) and str(err).startswith("550")


def _parse_modify(value: Optional[str]) -> Optional[datetime]:
    # MLSD "modify" fact: YYYYMMDDHHMMSS[.sss], always UTC
    if not value:
        return None
    try:
        return datetime.strptime(value[:14], "%Y%m%d%H%M%S").replace(tzinfo=timezone.utc)
    except ValueError:
        return None


class FTPStorage:
    """
    FTP backend for ``ftp://[user[:password]@]host[:port]/path`` URLs.

    Every operation opens its own connection and closes it on return.
    Credentials in the URL win over the configured defaults.
    """

    def __init__(self, conf: FTPConfig, ftp_factory=ftplib.FTP):
        self.conf = conf
        self._ftp_factory = ftp_factory

    def stat(self, ctx: TransferContext, url: str) -> StorageObject:
        with self._connect(url) as client:
            return client.stat(ctx, url)

    def list(self, ctx: TransferContext, url: str) -> List[StorageObject]:
        with self._connect(url) as client:
            return client.list(ctx, url)

    def get(self, ctx: TransferContext, url: str, dest: BinaryIO) -> StorageObject:
        with self._connect(url) as client:
            return client.get(ctx, url, dest)

    def put(self, ctx: TransferContext, url: str, src: BinaryIO) -> StorageObject:
        with self._connect(url) as client:
            return client.put(ctx, url, src)

    def join(self, url: str, path: str) -> str:
        return join_url(url, path)

    def credentials(self, url: str) -> Tuple[str, str]:
        """
        Resolve the login for ``url``.

        A username in the URL replaces the configured one; the configured
        password ("anonymous" by default) makes no sense for it, so the
        password comes only from the URL, empty if absent.
        """
        u = urlsplit(url)
        user, password = self.conf.user, self.conf.password
        if u.username is not None:
            user = u.username
            password = u.password if u.password is not None else ""
        return user, password

    @contextlib.contextmanager
    def _connect(self, url: str) -> Iterator["_FTPClient"]:
        """Open and log in a connection for one operation."""
        if not url.startswith(FTP_PROTOCOL):
            raise UnsupportedProtocolError(BACKEND, url)

        try:
            u = urlsplit(url)
            host, port = u.hostname, u.port or FTP_DEFAULT_PORT
        except ValueError as e:
            raise InvalidAddressError(BACKEND, url) from e
        if not host:
            raise InvalidAddressError(BACKEND, url)

        ftp = self._ftp_factory(timeout=self.conf.timeout)
        try:
            try:
                ftp.connect(host, port)
            except ftplib.all_errors as e:
                raise BackendError(BACKEND, "connecting to server", url, e) from e

            user, password = self.credentials(url)
            try:
                ftp.login(user, password)
            except ftplib.all_errors as e:
                raise BackendError(BACKEND, "logging in", url, e) from e

            yield _FTPClient(ftp)
        finally:
            _close(ftp)


def _close(ftp: ftplib.FTP) -> None:
    # Never connected; there is no session to QUIT.
    if getattr(ftp, "sock", None) is None:
        ftp.close()
        return
    try:
        ftp.quit()
    except ftplib.all_errors as e:
        logger.debug("FTP QUIT failed, closing socket: %s", e)
        ftp.close()


class _FTPClient:
    """Storage operations over a single logged-in connection."""

    def __init__(self, ftp: ftplib.FTP):
        self.ftp = ftp

    def _entries(self, path: str, url: str) -> List[Tuple[str, dict]]:
        try:
            return list(self.ftp.mlsd(path, facts=["type", "size", "modify"]))
        except ftplib.all_errors as e:
            if is_unavailable(e):
                raise NotFoundError(f"{BACKEND}: path not found: {url}") from e
            raise BackendError(BACKEND, f"listing path {path!r}", url, e) from e

    def stat(self, ctx: TransferContext, url: str) -> StorageObject:
        ctx.check()
        path = urlsplit(url).path
        dirpath, name = posixpath.split(path)
        if not name:
            raise NotFoundError(f"{BACKEND}: object not found: {url}")

        matches = [facts for entry, facts in self._entries(dirpath or "/", url) if entry == name]
        if len(matches) != 1:
            raise NotFoundError(f"{BACKEND}: object not found: {url}")

        facts = matches[0]
        if facts.get("type") != _FILE:
            raise NotFoundError(f"{BACKEND}: stat on non-regular file type: {url}")
        return self._object(url, path.lstrip("/"), facts)

    def list(self, ctx: TransferContext, url: str) -> List[StorageObject]:
        ctx.check()
        path = urlsplit(url).path

        # Special case where List was called on a regular file.
        if path.strip("/"):
            try:
                return [self.stat(ctx, url)]
            except NotFoundError:
                pass

        objects = []
        for name, facts in self._entries(path or "/", url):
            kind = facts.get("type", "")
            if kind in _SKIP_DIRS or name in (".", ".."):
                continue
            joined = join_url(url, name)
            if kind == _DIR:
                objects.extend(self.list(ctx, joined))
            elif kind == _FILE:
                rel = posixpath.join(path, name).lstrip("/")
                objects.append(self._object(joined, rel, facts))
            # Links (OS.unix=symlink...) and other kinds are skipped.
        return objects

    def get(self, ctx: TransferContext, url: str, dest: BinaryIO) -> StorageObject:
        obj = self.stat(ctx, url)
        writer = ContextWriter(ctx, dest)
        try:
            self.ftp.retrbinary(f"RETR /{obj.name}", writer.write)
        except ftplib.all_errors as e:
            raise BackendError(BACKEND, "copying file", url, e) from e
        return obj

    def put(self, ctx: TransferContext, url: str, src: BinaryIO) -> StorageObject:
        path = urlsplit(url).path
        dirpath, name = posixpath.split(path)
        if not name:
            raise InvalidAddressError(BACKEND, url)

        try:
            self.ftp.cwd("/")
        except ftplib.all_errors as e:
            raise BackendError(BACKEND, "changing to root directory", url, e) from e
        for part in [d for d in dirpath.split("/") if d]:
            self._enter_dir(part, url)

        try:
            self.ftp.storbinary(f"STOR {name}", ContextReader(ctx, src))
        except ftplib.all_errors as e:
            raise BackendError(BACKEND, "uploading file", url, e) from e
        return self.stat(ctx, url)

    def _enter_dir(self, part: str, url: str) -> None:
        """CWD into ``part``, creating it first if it doesn't exist."""
        try:
            self.ftp.cwd(part)
            return
        except ftplib.all_errors as e:
            if not is_unavailable(e):
                raise BackendError(BACKEND, f"changing directory to {part!r}", url, e) from e

        try:
            self.ftp.mkd(part)
        except ftplib.all_errors as e:
            # A concurrent uploader may have created it first.
            if not is_unavailable(e):
                raise BackendError(BACKEND, f"creating directory {part!r}", url, e) from e

        try:
            self.ftp.cwd(part)
        except ftplib.all_errors as e:
            raise BackendError(BACKEND, f"changing directory to {part!r}", url, e) from e

    def _object(self, url: str, name: str, facts: dict) -> StorageObject:
        return StorageObject(
            url=url,
            name=name,
            last_modified=_parse_modify(facts.get("modify")),
            size=int(facts.get("size", 0) or 0),
        )
