"""Factory for creating storage backend instances."""

import logging

from ..config import StorageConfig
from ..constants import FILE_PROTOCOL, FTP_PROTOCOL, GS_PROTOCOL, SWIFT_PROTOCOL
from ..errors import ConfigError, UnsupportedProtocolError
from .base import Storage
from .fs import FilesystemStorage
from .ftp import FTPStorage
from .gcs import GoogleCloudStorage
from .swift import SwiftStorage

logger = logging.getLogger(__name__)


def validate_backend_config(url: str, config: StorageConfig) -> None:
    """
    Early validation of the configuration for the backend serving ``url``.

    Args:
        url: Storage URL; its prefix picks the backend
        config: Storage configuration to validate

    Raises:
        UnsupportedProtocolError: If no backend handles the prefix
        ConfigError: If that backend is disabled or missing credentials
    """
    if url.startswith(GS_PROTOCOL):
        if not config.google_cloud.valid():
            raise ConfigError("failed to configure Google Storage backend: backend is disabled")
    elif url.startswith(SWIFT_PROTOCOL):
        if not config.swift.valid():
            raise ConfigError(
                "failed to configure Swift storage backend: set storage.swift credentials "
                "(user_name, password, auth_url, tenant_name, tenant_id, region_name) "
                "or the matching OS_* environment variables"
            )
    elif url.startswith(FTP_PROTOCOL):
        if not config.ftp.valid():
            raise ConfigError("failed to configure FTP storage backend: backend is disabled")
    elif url.startswith(FILE_PROTOCOL):
        if not config.local.valid():
            raise ConfigError("failed to configure local storage backend: backend is disabled")
    else:
        raise UnsupportedProtocolError("storage", url)


def make_storage(url: str, config: StorageConfig) -> Storage:
    """
    Create the storage backend for a URL, based on its protocol prefix.

    Configuration is validated before any backend is constructed, so an
    invalid configuration never reaches the network.

    Args:
        url: Base storage URL, e.g. "gs://bucket/lfs"
        config: Storage configuration

    Returns:
        Storage instance

    Raises:
        UnsupportedProtocolError: If no backend handles the prefix
        ConfigError: If the backend configuration is invalid
    """
    validate_backend_config(url, config)

    if url.startswith(GS_PROTOCOL):
        store = GoogleCloudStorage(config.google_cloud)

    elif url.startswith(SWIFT_PROTOCOL):
        store = SwiftStorage(config.swift)

    elif url.startswith(FTP_PROTOCOL):
        store = FTPStorage(config.ftp)

    else:
        store = FilesystemStorage(config.local)

    logger.debug("Using %s for %s", type(store).__name__, url)
    return store
