"""Local filesystem storage implementation."""

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, List

from ..config import LocalConfig
from ..constants import FILE_PROTOCOL
from ..context import TransferContext
from ..errors import BackendError, InvalidAddressError, NotFoundError, UnsupportedProtocolError
from ..storage_models import StorageObject, join_url
from ..utils import copy_stream
from .contextio import ContextReader, ContextWriter

logger = logging.getLogger(__name__)

BACKEND = "localStorage"


class FilesystemStorage:
    """
    Store objects as plain files, addressed as ``file:///abs/path``.

    Useful for shared network mounts and for tests that shouldn't need a
    cloud emulator.
    """

    def __init__(self, conf: LocalConfig):
        self.conf = conf

    def stat(self, ctx: TransferContext, url: str) -> StorageObject:
        path = self._parse_url(url)
        try:
            st = path.lstat()
        except FileNotFoundError as e:
            raise NotFoundError(f"{BACKEND}: object not found: {url}") from e
        except OSError as e:
            raise BackendError(BACKEND, "calling stat", url, e) from e

        if not path.is_file() or path.is_symlink():
            raise NotFoundError(f"{BACKEND}: stat on non-regular file: {url}")
        return self._object(url, path, st)

    def list(self, ctx: TransferContext, url: str) -> List[StorageObject]:
        root = self._parse_url(url)
        if root.is_file() and not root.is_symlink():
            return [self.stat(ctx, url)]
        if not root.is_dir():
            return []

        objects = []
        try:
            for dirpath, dirnames, filenames in os.walk(root):
                ctx.check()
                dirnames.sort()
                for name in sorted(filenames):
                    path = Path(dirpath) / name
                    if path.is_symlink() or not path.is_file():
                        continue
                    rel = path.relative_to(root).as_posix()
                    objects.append(self._object(join_url(url, rel), path, path.stat()))
        except OSError as e:
            raise BackendError(BACKEND, "listing directory", url, e) from e
        return objects

    def get(self, ctx: TransferContext, url: str, dest: BinaryIO) -> StorageObject:
        obj = self.stat(ctx, url)
        path = self._parse_url(url)
        try:
            with open(path, "rb") as f:
                copy_stream(ContextReader(ctx, f), dest)
        except OSError as e:
            raise BackendError(BACKEND, "copying file", url, e) from e
        return obj

    def put(self, ctx: TransferContext, url: str, src: BinaryIO) -> StorageObject:
        path = self._parse_url(url)
        tmp = path.with_name(f".{path.name}.partial")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "wb") as f:
                copy_stream(src, ContextWriter(ctx, f))
            os.replace(tmp, path)
        except OSError as e:
            raise BackendError(BACKEND, "writing file", url, e) from e
        finally:
            if tmp.exists():
                tmp.unlink()
        logger.debug("Wrote %s", path)
        return self.stat(ctx, url)

    def join(self, url: str, path: str) -> str:
        return join_url(url, path)

    def _parse_url(self, url: str) -> Path:
        """
        Parse a file:// URL to get the file path.

        Raises:
            UnsupportedProtocolError: If not a file:// URL
            InvalidAddressError: If the URL has no path
        """
        if not url.startswith(FILE_PROTOCOL):
            raise UnsupportedProtocolError(BACKEND, url)
        rest = url[len(FILE_PROTOCOL):]
        if not rest:
            raise InvalidAddressError(BACKEND, url)
        return Path(rest)

    def _object(self, url: str, path: Path, st: os.stat_result) -> StorageObject:
        return StorageObject(
            url=url,
            name=path.as_posix().lstrip("/"),
            last_modified=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
            size=st.st_size,
        )
