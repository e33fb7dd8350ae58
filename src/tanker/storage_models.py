"""Storage-related data models shared by every backend.

This module contains the object metadata record returned by the storage
operations and the helpers that split and join protocol-prefixed URLs.
"""

from datetime import datetime
from typing import NamedTuple, Optional

from pydantic import BaseModel, ConfigDict

from .errors import InvalidAddressError, UnsupportedProtocolError


class StorageObject(BaseModel):
    """Metadata about an object in storage.

    Fetched fresh on every stat/get/put/list call; never cached.
    """
    model_config = ConfigDict(frozen=True)

    url: str                                # "gs://bucket/dir/obj.txt"
    name: str                               # "dir/obj.txt"
    etag: str = ""                          # Opaque version tag; empty if unknown
    last_modified: Optional[datetime] = None
    size: int = 0


class UrlParts(NamedTuple):
    """Bucket (or container) and key of a bucket-style URL."""
    bucket: str
    path: str


def parse_bucket_url(url: str, protocol: str, backend: str) -> UrlParts:
    """
    Split ``<protocol><bucket>/<path>`` into its parts.

    Args:
        url: URL to parse
        protocol: Expected prefix, e.g. "gs://"
        backend: Backend name used in error messages

    Returns:
        UrlParts; ``path`` is empty when the URL names only a bucket

    Raises:
        UnsupportedProtocolError: If the prefix doesn't match
        InvalidAddressError: If nothing follows the prefix
    """
    if not url.startswith(protocol):
        raise UnsupportedProtocolError(backend, url)

    rest = url[len(protocol):]
    bucket, _, path = rest.partition("/")
    if not bucket:
        raise InvalidAddressError(backend, url)
    return UrlParts(bucket=bucket, path=path)


def join_url(url: str, path: str) -> str:
    """
    Join a directory URL with a subpath.

    Exactly one trailing separator is stripped from ``url`` before
    ``"/" + path`` is appended. An empty ``path`` returns ``url`` as is,
    so repeated joins with an empty subpath are idempotent.
    """
    if not path:
        return url
    if url.endswith("/"):
        url = url[:-1]
    return f"{url}/{path}"
