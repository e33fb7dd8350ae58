"""Constants for tanker."""

# Agent working directory (relative to the repository the agent runs in)
TANKER_DIR = ".tanker"

# Files and directories inside TANKER_DIR
CONFIG_FILE = "config.yaml"
DATA_DIR = "data"
LOG_FILE = "logs/tanker.log"

# Environment variable overriding the config file location
CONFIG_ENV_VAR = "TANKER_CONFIG"

# URL protocol prefixes
GS_PROTOCOL = "gs://"
SWIFT_PROTOCOL = "swift://"
FTP_PROTOCOL = "ftp://"
FILE_PROTOCOL = "file://"

# Decimal units, matching the sizes object stores document
KB = 1000
MB = 1000 * KB
GB = 1000 * MB

# Swift static large object chunking
SWIFT_DEFAULT_CHUNK_SIZE = 500 * MB
SWIFT_MIN_CHUNK_SIZE = 100 * MB
SWIFT_MAX_CHUNK_SIZE = 5 * GB
SWIFT_DEFAULT_MAX_RETRIES = 20

# FTP defaults
FTP_DEFAULT_PORT = 21
FTP_DEFAULT_TIMEOUT = 10.0
FTP_DEFAULT_USER = "anonymous"
FTP_DEFAULT_PASSWORD = "anonymous"

# Progress sampling interval for transfers (seconds)
PROGRESS_INTERVAL = 0.25

# Copy buffer size for streaming transfers
COPY_BUFFER_SIZE = 64 * 1024

# git-lfs error codes
TRANSFER_ERROR_CODE = 1
UNEXPECTED_ERROR_CODE = 2

# Version
TANKER_VERSION = "0.1.0"
