"""Shared fixtures: builders for synthetic journal files."""

import gzip
import struct
from pathlib import Path
from typing import Iterable, Optional, Tuple

import pytest
import zstandard

# (path, event_id, flags, node_id, extra_id)
Entry = Tuple[str, int, int, Optional[int], Optional[int]]


def encode_record(version: bytes, path: str, event_id: int, flags: int,
                  node_id: Optional[int] = None, extra_id: Optional[int] = None) -> bytes:
    data = path.encode("utf-8") + b"\x00" + struct.pack(">QI", event_id, flags)
    if version in (b"2SLD", b"3SLD"):
        data += struct.pack("<Q", node_id or 0)
    if version == b"3SLD":
        data += struct.pack("<I", extra_id or 0)
    return data


def build_page(version: bytes, entries: Iterable[Entry], length: Optional[int] = None) -> bytes:
    """A page header plus records; length defaults to the real page size."""
    payload = b"".join(encode_record(version, *entry) for entry in entries)
    if length is None:
        length = len(payload) + 12
    return struct.pack("<4sII", version, 0, length) + payload


def v1_entries(prefix: str, count: int, start_id: int = 1, flags: int = 0x0100_8000):
    return [(f"{prefix}/file{i}", start_id + i, flags, None, None) for i in range(count)]


def write_gzip(path: Path, *members: bytes) -> Path:
    """Write each chunk as its own gzip member."""
    with open(path, "wb") as f:
        for member in members:
            f.write(gzip.compress(member))
    return path


def write_zstd(path: Path, data: bytes) -> Path:
    path.write_bytes(zstandard.ZstdCompressor().compress(data))
    return path


@pytest.fixture
def journal_dir(tmp_path):
    d = tmp_path / "fseventsd"
    d.mkdir()
    return d


@pytest.fixture
def v2_journal(journal_dir):
    """One gzip file with a single V2 record for /tmp/a."""
    page = build_page(b"2SLD", [("tmp/a", 0x10, 0x1000_8000, 42, None)])
    return write_gzip(journal_dir / "0000000000000010", page)


@pytest.fixture
def two_journals(journal_dir):
    """Two V1 journals, A with 3 records and B with 2."""
    a = write_gzip(journal_dir / "000000000000000a", build_page(b"1SLD", v1_entries("a", 3, 1)))
    b = write_gzip(journal_dir / "000000000000000b", build_page(b"1SLD", v1_entries("b", 2, 100)))
    return a, b
