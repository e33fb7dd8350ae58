"""Google Cloud Storage implementation."""

import http.client
import logging
from typing import BinaryIO, List

import requests
import urllib3

from ..config import GoogleCloudConfig
from ..constants import GS_PROTOCOL
from ..context import TransferContext
from ..errors import BackendError, ConfigError, NotFoundError
from ..storage_models import StorageObject, UrlParts, join_url, parse_bucket_url
from .contextio import ContextReader, ContextWriter

logger = logging.getLogger(__name__)

BACKEND = "googleStorage"


class GoogleCloudStorage:
    """
    Google Cloud Storage backend for ``gs://bucket/path`` URLs.

    Directory placeholders (names ending in "/") are not objects and are
    skipped when listing.
    """

    def __init__(self, conf: GoogleCloudConfig, client=None):
        """
        Initialize Google Cloud Storage client.

        Args:
            conf: Backend configuration
            client: Pre-built ``google.cloud.storage.Client`` (tests)
        """
        try:
            from google.api_core import exceptions as api_exceptions
            from google.auth.exceptions import GoogleAuthError, TransportError
            from google.cloud import storage
            from google.cloud.storage.exceptions import DataCorruption, InvalidResponse
        except ImportError:
            raise ImportError(
                "google-cloud-storage required for Google Cloud Storage. "
                "Install with: pip install google-cloud-storage"
            )

        self._api_exceptions = api_exceptions
        # Anything the client raises for a failed request or connection,
        # including a body cut short or failing its checksum mid-transfer.
        self._errors = (
            api_exceptions.GoogleAPIError,
            TransportError,
            DataCorruption,
            InvalidResponse,
            requests.RequestException,
            urllib3.exceptions.HTTPError,
            http.client.HTTPException,
        )
        if client is None:
            try:
                client = self._make_client(storage, conf)
            except (OSError, ValueError, GoogleAuthError) as e:
                raise ConfigError(f"failed to configure Google Storage backend: {e}") from e
        self.client = client

    @staticmethod
    def _make_client(storage, conf: GoogleCloudConfig):
        if conf.credentials_file:
            # Service account key, usually downloaded from IAM & Admin.
            return storage.Client.from_service_account_json(conf.credentials_file)

        from google.auth.exceptions import DefaultCredentialsError
        try:
            return storage.Client()
        except DefaultCredentialsError:
            logger.info("No Google credentials found, using anonymous client")
            return storage.Client.create_anonymous_client()

    def stat(self, ctx: TransferContext, url: str) -> StorageObject:
        u = self._parse_url(url)
        ctx.check()
        try:
            blob = self.client.bucket(u.bucket).get_blob(u.path)
        except self._api_exceptions.NotFound as e:
            raise NotFoundError(f"{BACKEND}: object not found: {url}") from e
        except self._errors as e:
            raise BackendError(BACKEND, "calling stat on object", url, e) from e

        if blob is None:
            raise NotFoundError(f"{BACKEND}: object not found: {url}")
        return self._object(url, blob)

    def list(self, ctx: TransferContext, url: str) -> List[StorageObject]:
        u = self._parse_url(url)
        objects = []
        try:
            pages = self.client.list_blobs(u.bucket, prefix=u.path).pages
            for page in pages:
                ctx.check()
                for blob in page:
                    if blob.name.endswith("/"):
                        continue
                    objects.append(self._object(f"{GS_PROTOCOL}{u.bucket}/{blob.name}", blob))
        except self._errors as e:
            raise BackendError(BACKEND, "listing objects", url, e) from e
        return objects

    def get(self, ctx: TransferContext, url: str, dest: BinaryIO) -> StorageObject:
        obj = self.stat(ctx, url)
        u = self._parse_url(url)
        try:
            blob = self.client.bucket(u.bucket).blob(u.path)
            blob.download_to_file(ContextWriter(ctx, dest))
        except self._errors as e:
            raise BackendError(BACKEND, "getting object", url, e) from e
        return obj

    def put(self, ctx: TransferContext, url: str, src: BinaryIO) -> StorageObject:
        u = self._parse_url(url)
        try:
            blob = self.client.bucket(u.bucket).blob(u.path)
            blob.upload_from_file(ContextReader(ctx, src))
        except self._errors as e:
            raise BackendError(BACKEND, "uploading object", url, e) from e
        return self.stat(ctx, url)

    def join(self, url: str, path: str) -> str:
        return join_url(url, path)

    def _parse_url(self, url: str) -> UrlParts:
        return parse_bucket_url(url, GS_PROTOCOL, BACKEND)

    def _object(self, url: str, blob) -> StorageObject:
        return StorageObject(
            url=url,
            name=blob.name,
            etag=blob.etag or "",
            last_modified=blob.updated,
            size=blob.size or 0,
        )
