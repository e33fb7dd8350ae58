"""Tests for utility helpers."""

import io

import pytest

from tanker.utils import copy_stream, ensure_path, humanize_size, parse_duration


class TestParseDuration:
    """Tests for parse_duration."""

    @pytest.mark.parametrize("value,expected", [
        (10, 10.0),
        (2.5, 2.5),
        ("3", 3.0),
        ("10s", 10.0),
        ("250ms", 0.25),
        ("1m", 60.0),
        ("1h30m", 5400.0),
        ("1m30s", 90.0),
        ("1.5s", 1.5),
    ])
    def test_valid(self, value, expected):
        assert parse_duration(value) == pytest.approx(expected)

    @pytest.mark.parametrize("value", ["", "ten seconds", "10x", "s10", "10s junk", None])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_duration(value)


def test_copy_stream_counts_bytes():
    """copy_stream copies everything across buffer boundaries."""
    data = b"x" * 1000 + b"y" * 24
    dest = io.BytesIO()
    assert copy_stream(io.BytesIO(data), dest, bufsize=100) == len(data)
    assert dest.getvalue() == data


def test_ensure_path_creates_parents(tmp_path):
    target = tmp_path / "a" / "b" / "file.txt"
    assert ensure_path(target) == target
    assert target.parent.is_dir()
    assert not target.exists()


def test_humanize_size():
    assert humanize_size(512) == "512.0 B"
    assert humanize_size(2048) == "2.0 KB"
