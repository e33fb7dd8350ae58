"""Utility functions for tanker."""

import re
from pathlib import Path
from typing import BinaryIO, Union

from .constants import COPY_BUFFER_SIZE


def ensure_dir(path: Union[str, Path]) -> Path:
    """Ensure a directory exists, creating parents as needed."""
    p = Path(path)
    p.mkdir(mode=0o775, parents=True, exist_ok=True)
    return p


def ensure_path(path: Union[str, Path]) -> Path:
    """Ensure the parent directory of a file path exists."""
    p = Path(path)
    ensure_dir(p.parent)
    return p


def copy_stream(src: BinaryIO, dest: BinaryIO, bufsize: int = COPY_BUFFER_SIZE) -> int:
    """Copy ``src`` into ``dest`` until EOF and return the byte count."""
    total = 0
    while True:
        chunk = src.read(bufsize)
        if not chunk:
            return total
        dest.write(chunk)
        total += len(chunk)


def humanize_size(size: float) -> str:
    """Convert bytes to human-readable format."""
    for unit in ["B", "KB", "MB", "GB"]:
        if size < 1024.:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: Union[str, int, float]) -> float:
    """
    Parse a duration into seconds.

    Accepts plain numbers (seconds) and strings such as "10s", "250ms"
    or "1h30m".

    Raises:
        ValueError: If the string isn't a valid duration
    """
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        raise ValueError(f"invalid duration: {value!r}")

    text = value.strip()
    if not text:
        raise ValueError("empty duration")
    try:
        return float(text)
    except ValueError:
        pass

    pos = 0
    seconds = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text):
        raise ValueError(f"invalid duration: {value!r}")
    return seconds
