"""Base protocol for storage backend implementations."""

from typing import BinaryIO, List, Protocol

from ..context import TransferContext
from ..storage_models import StorageObject


class Storage(Protocol):
    """
    Protocol for storage backends (Google Cloud Storage, Swift, FTP, ...).

    URLs are fully qualified and protocol-prefixed. Implementations raise
    the errors in ``tanker.errors``: ``NotFoundError`` for missing objects,
    ``BackendError`` for transport failures (the only retryable kind),
    ``UnsupportedProtocolError``/``InvalidAddressError`` for bad URLs and
    ``CancelledError`` when the context is cancelled mid-transfer.

    A backend instance is used by one session for its whole lifetime, one
    call at a time.
    """

    def stat(self, ctx: TransferContext, url: str) -> StorageObject:
        """
        Return metadata for the object at ``url``.

        Raises:
            NotFoundError: If no single object matches the URL
        """
        ...

    def list(self, ctx: TransferContext, url: str) -> List[StorageObject]:
        """
        Recursively list the regular files at or under ``url``.

        Directory markers and links are skipped. Listing a single file
        returns a one-element list.
        """
        ...

    def get(self, ctx: TransferContext, url: str, dest: BinaryIO) -> StorageObject:
        """
        Copy the object's bytes into ``dest`` and return its metadata.

        On failure ``dest`` may hold a partial copy; it isn't rolled back.
        """
        ...

    def put(self, ctx: TransferContext, url: str, src: BinaryIO) -> StorageObject:
        """
        Upload ``src`` to ``url`` and return the freshly stat'ed object.
        """
        ...

    def join(self, url: str, path: str) -> str:
        """Join a directory URL with a subpath. No I/O."""
        ...
