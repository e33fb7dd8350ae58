"""OpenStack Swift object storage implementation."""

import http.client
import json
import logging
import os
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import BinaryIO, List, Optional

import requests
import urllib3

from ..config import SwiftConfig
from ..constants import COPY_BUFFER_SIZE, SWIFT_PROTOCOL
from ..context import TransferContext
from ..errors import BackendError, NotFoundError
from ..storage_models import StorageObject, UrlParts, join_url, parse_bucket_url
from .contextio import ContextReader, ContextWriter

logger = logging.getLogger(__name__)

BACKEND = "swift"


class _SegmentReader:
    """Reads at most ``limit`` bytes from ``src``, starting with ``head``."""

    def __init__(self, src: BinaryIO, limit: int, head: bytes):
        self.src = src
        self.remaining = limit - len(head)
        self.head = head
        self.count = 0
        self.eof = False

    def read(self, size: int = -1) -> bytes:
        if self.head:
            data, self.head = self.head, b""
            self.count += len(data)
            return data
        if self.remaining <= 0 or self.eof:
            return b""
        if size is None or size < 0 or size > self.remaining:
            size = self.remaining
        data = self.src.read(size)
        if not data:
            self.eof = True
            return b""
        self.remaining -= len(data)
        self.count += len(data)
        return data


def _parse_listing_time(value: Optional[str]) -> Optional[datetime]:
    # Container listings use ISO 8601 without a zone; Swift stores UTC.
    if not value:
        return None
    return datetime.fromisoformat(value).replace(tzinfo=timezone.utc)


def _parse_header_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return parsedate_to_datetime(value)


class SwiftStorage:
    """
    Swift backend for ``swift://container/path`` URLs.

    Uploads are written as static large objects: the source is streamed in
    ``chunk_size`` segments into ``<container>_segments`` and a manifest is
    written at the object name. Request retries are left to the swiftclient
    connection (``max_retries``).
    """

    def __init__(self, conf: SwiftConfig, connection=None):
        """
        Initialize and authenticate a Swift connection.

        Args:
            conf: Backend configuration; unset credentials come from OS_* env vars
            connection: Pre-built ``swiftclient.client.Connection`` (tests)
        """
        try:
            from swiftclient import client as swift_client
        except ImportError:
            raise ImportError(
                "python-swiftclient required for Swift storage. "
                "Install with: pip install python-swiftclient"
            )

        # Connection failures, including a response body cut short mid-stream.
        self._errors = (
            swift_client.ClientException,
            requests.RequestException,
            urllib3.exceptions.HTTPError,
            http.client.HTTPException,
        )
        self._client_exception = swift_client.ClientException
        self.chunk_size = conf.effective_chunk_size

        if connection is None:
            connection = self._connect(swift_client, conf)
        self.conn = connection

    def _connect(self, swift_client, conf: SwiftConfig):
        env = os.environ.get
        auth_url = conf.auth_url or env("OS_AUTH_URL", "")
        auth_version = env("OS_IDENTITY_API_VERSION") or ("3" if auth_url.rstrip("/").endswith("v3") else "2.0")
        os_options = {
            "tenant_name": conf.tenant_name or env("OS_TENANT_NAME") or env("OS_PROJECT_NAME"),
            "tenant_id": conf.tenant_id or env("OS_TENANT_ID") or env("OS_PROJECT_ID"),
            "project_name": conf.tenant_name or env("OS_PROJECT_NAME") or env("OS_TENANT_NAME"),
            "project_id": conf.tenant_id or env("OS_PROJECT_ID") or env("OS_TENANT_ID"),
            "region_name": conf.region_name or env("OS_REGION_NAME"),
        }
        conn = swift_client.Connection(
            authurl=auth_url,
            user=conf.user_name or env("OS_USERNAME"),
            key=conf.password or env("OS_PASSWORD"),
            tenant_name=os_options["tenant_name"],
            os_options=os_options,
            auth_version=auth_version,
            retries=conf.max_retries,
        )
        try:
            conn.get_auth()
        except self._errors as e:
            raise BackendError(BACKEND, "authenticating", auth_url, e) from e
        logger.debug("Authenticated to Swift at %s", auth_url)
        return conn

    def stat(self, ctx: TransferContext, url: str) -> StorageObject:
        u = self._parse_url(url)
        ctx.check()
        try:
            headers = self.conn.head_object(u.bucket, u.path)
        except self._errors as e:
            if self._is_not_found(e):
                raise NotFoundError(f"{BACKEND}: object not found: {url}") from e
            raise BackendError(BACKEND, "getting object info", url, e) from e

        return StorageObject(
            url=url,
            name=u.path,
            etag=headers.get("etag", "").strip('"'),
            last_modified=_parse_header_time(headers.get("last-modified")),
            size=int(headers.get("content-length", 0)),
        )

    def list(self, ctx: TransferContext, url: str) -> List[StorageObject]:
        u = self._parse_url(url)
        ctx.check()
        try:
            _, listing = self.conn.get_container(u.bucket, prefix=u.path, full_listing=True)
        except self._errors as e:
            raise BackendError(BACKEND, "listing objects by prefix", url, e) from e

        objects = []
        for entry in listing:
            if "subdir" in entry or entry["name"].endswith("/"):
                continue
            objects.append(StorageObject(
                url=f"{SWIFT_PROTOCOL}{u.bucket}/{entry['name']}",
                name=entry["name"],
                etag=entry.get("hash", ""),
                last_modified=_parse_listing_time(entry.get("last_modified")),
                size=entry.get("bytes", 0),
            ))
        return objects

    def get(self, ctx: TransferContext, url: str, dest: BinaryIO) -> StorageObject:
        obj = self.stat(ctx, url)
        u = self._parse_url(url)
        writer = ContextWriter(ctx, dest)
        try:
            _, body = self.conn.get_object(u.bucket, u.path, resp_chunk_size=COPY_BUFFER_SIZE)
            for chunk in body:
                writer.write(chunk)
        except self._errors as e:
            raise BackendError(BACKEND, "copying file", url, e) from e
        return obj

    def put(self, ctx: TransferContext, url: str, src: BinaryIO) -> StorageObject:
        u = self._parse_url(url)
        reader = ContextReader(ctx, src)
        try:
            segments = self._upload_segments(u, reader)
            if segments:
                manifest = json.dumps(segments)
                self.conn.put_object(
                    u.bucket, u.path,
                    contents=manifest,
                    query_string="multipart-manifest=put",
                )
            else:
                # Nothing to segment; an SLO needs at least one segment.
                self.conn.put_object(u.bucket, u.path, contents=b"")
        except self._errors as e:
            raise BackendError(BACKEND, "creating object", url, e) from e
        return self.stat(ctx, url)

    def _upload_segments(self, u: UrlParts, reader: ContextReader) -> List[dict]:
        """Stream ``reader`` into segment objects and return the SLO manifest."""
        seg_container = f"{u.bucket}_segments"
        seg_prefix = f"{u.path}/slo/{time.time():.6f}"
        segments = []

        head = reader.read(1)
        if not head:
            return segments

        self.conn.put_container(seg_container)
        while head:
            seg_name = f"{seg_prefix}/{len(segments):08d}"
            seg = _SegmentReader(reader, self.chunk_size, head)
            etag = self.conn.put_object(seg_container, seg_name, contents=seg)
            segments.append({
                "path": f"/{seg_container}/{seg_name}",
                "etag": etag,
                "size_bytes": seg.count,
            })
            logger.debug("Uploaded segment %s (%d bytes)", seg_name, seg.count)
            head = b"" if seg.eof else reader.read(1)
        return segments

    def join(self, url: str, path: str) -> str:
        return join_url(url, path)

    def _parse_url(self, url: str) -> UrlParts:
        return parse_bucket_url(url, SWIFT_PROTOCOL, BACKEND)

    def _is_not_found(self, e: Exception) -> bool:
        return isinstance(e, self._client_exception) and getattr(e, "http_status", None) == 404
