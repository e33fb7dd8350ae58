"""Agent and storage backend configuration.

Configuration lives in ``.tanker/config.yaml`` (or the file named by
``TANKER_CONFIG``). Every field has a default, so a missing file is fine;
``base_url`` is the only value a transfer can't run without.
"""

import os
from pathlib import Path
from typing import Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .constants import (
    CONFIG_ENV_VAR,
    CONFIG_FILE,
    DATA_DIR,
    FTP_DEFAULT_PASSWORD,
    FTP_DEFAULT_TIMEOUT,
    FTP_DEFAULT_USER,
    LOG_FILE,
    SWIFT_DEFAULT_CHUNK_SIZE,
    SWIFT_DEFAULT_MAX_RETRIES,
    SWIFT_MAX_CHUNK_SIZE,
    SWIFT_MIN_CHUNK_SIZE,
    TANKER_DIR,
)
from .errors import ConfigError
from .utils import parse_duration


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid")


class GoogleCloudConfig(_Section):
    """Google Cloud Storage backend.

    Without a credentials file the client uses Application Default
    Credentials, falling back to anonymous access.
    """
    disabled: bool = False
    credentials_file: str = ""

    def valid(self) -> bool:
        return not self.disabled


def _env_any(*names: str) -> bool:
    return any(os.environ.get(name) for name in names)


class SwiftConfig(_Section):
    """OpenStack Swift backend.

    Credentials not set here are read from the standard ``OS_*``
    environment variables.
    """
    disabled: bool = False
    user_name: str = ""
    password: str = ""
    auth_url: str = ""
    tenant_name: str = ""
    tenant_id: str = ""
    region_name: str = ""
    # Chunk size for static large object uploads. Values below 100 MB
    # fall back to 500 MB; values above 5 GB are capped.
    chunk_size_bytes: int = SWIFT_DEFAULT_CHUNK_SIZE
    max_retries: int = SWIFT_DEFAULT_MAX_RETRIES

    def valid(self) -> bool:
        user = bool(self.user_name) or _env_any("OS_USERNAME")
        password = bool(self.password) or _env_any("OS_PASSWORD")
        auth_url = bool(self.auth_url) or _env_any("OS_AUTH_URL")
        tenant_name = bool(self.tenant_name) or _env_any("OS_TENANT_NAME", "OS_PROJECT_NAME")
        tenant_id = bool(self.tenant_id) or _env_any("OS_TENANT_ID", "OS_PROJECT_ID")
        region = bool(self.region_name) or _env_any("OS_REGION_NAME")

        complete = user and password and auth_url and tenant_name and tenant_id and region
        return not self.disabled and complete

    @property
    def effective_chunk_size(self) -> int:
        """Chunk size clamped into [100 MB, 5 GB]."""
        if self.chunk_size_bytes < SWIFT_MIN_CHUNK_SIZE:
            return SWIFT_DEFAULT_CHUNK_SIZE
        if self.chunk_size_bytes > SWIFT_MAX_CHUNK_SIZE:
            return SWIFT_MAX_CHUNK_SIZE
        return self.chunk_size_bytes


class FTPConfig(_Section):
    """FTP backend. Credentials embedded in a URL take precedence."""
    disabled: bool = False
    timeout: float = FTP_DEFAULT_TIMEOUT   # seconds; accepts "10s"
    user: str = FTP_DEFAULT_USER
    password: str = FTP_DEFAULT_PASSWORD

    @field_validator("timeout", mode="before")
    @classmethod
    def parse_timeout(cls, v):
        return parse_duration(v)

    def valid(self) -> bool:
        return not self.disabled


class LocalConfig(_Section):
    """Local filesystem backend (``file://``)."""
    disabled: bool = False

    def valid(self) -> bool:
        return not self.disabled


class StorageConfig(_Section):
    google_cloud: GoogleCloudConfig = Field(default_factory=GoogleCloudConfig)
    swift: SwiftConfig = Field(default_factory=SwiftConfig)
    ftp: FTPConfig = Field(default_factory=FTPConfig)
    local: LocalConfig = Field(default_factory=LocalConfig)


class RetryConfig(_Section):
    """Backoff for retrying failed storage calls."""
    max_attempts: int = Field(default=5, ge=1)
    initial_delay: float = 1.0    # seconds; accepts "1s"
    max_delay: float = 30.0
    multiplier: float = Field(default=2.0, ge=1.0)

    @field_validator("initial_delay", "max_delay", mode="before")
    @classmethod
    def parse_delay(cls, v):
        return parse_duration(v)


class LoggingConfig(_Section):
    path: str = f"{TANKER_DIR}/{LOG_FILE}"
    level: str = "INFO"


class TankerConfig(_Section):
    """Top-level agent configuration."""
    base_url: str = ""
    data_dir: str = f"{TANKER_DIR}/{DATA_DIR}"
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)


def default_config_path() -> Path:
    """Config path from ``TANKER_CONFIG`` or ``.tanker/config.yaml``."""
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        return Path(override)
    return Path(TANKER_DIR) / CONFIG_FILE


def load_config(path: Optional[Union[str, Path]] = None) -> TankerConfig:
    """
    Load configuration from a YAML file.

    Args:
        path: Config file; defaults to ``default_config_path()``

    Returns:
        TankerConfig, with defaults when the file doesn't exist

    Raises:
        ConfigError: If the file can't be parsed or fails validation
    """
    cfg_path = Path(path) if path else default_config_path()
    if not cfg_path.exists():
        return TankerConfig()

    try:
        data = yaml.safe_load(cfg_path.read_text()) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {cfg_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Expected a mapping at the top of {cfg_path}")

    try:
        return TankerConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {cfg_path}: {e}") from e
