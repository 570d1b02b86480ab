"""
Decoder for the FSEvents journal format.

A journal file is one or more compressed segments (normally gzip members)
whose decompressed bytes are a run of pages. Each page starts with a
12-byte header:

    magic        4 bytes   b"1SLD", b"2SLD" or b"3SLD"
    unused       4 bytes
    page length  u32 LE    includes the 12 header bytes

followed by records packed back to back:

    path         NUL-terminated bytes
    event id     u64 BE
    flags        u32 BE
    node id      u64 LE    (V2, V3)
    extra id     u32 LE    (V3)

Decoding is lazy: only one page is held in memory at a time.
"""

import gzip
import logging
import struct
import threading
import zlib
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Callable, Generator, Iterator, List, Optional

import zstandard

from .exceptions import (
    CorruptArchiveError,
    DecodeError,
    FileAccessError,
    TruncatedRecordError,
    UnknownPageVersionError,
)
from .models import FormatVersion, Record

logger = logging.getLogger(__name__)

PAGE_HEADER = struct.Struct("<4sII")
PAGE_HEADER_SIZE = PAGE_HEADER.size
EVENT_FIELDS = struct.Struct(">QI")
NODE_ID = struct.Struct("<Q")
EXTRA_ID = struct.Struct("<I")

GZIP_MAGIC = b"\x1f\x8b"
ZSTD_MAGIC = b"\x28\xb5\x2f\xfd"

_CODEC_ERRORS = (EOFError, zlib.error, gzip.BadGzipFile, zstandard.ZstdError)


@dataclass
class RawPage:
    """
    One decompressed page.

    Attributes:
        version: Record layout announced by the page magic
        payload: Record bytes following the header
        offset: Offset of the page header in the decompressed stream
        declared_length: Payload length announced by the header
    """
    version: FormatVersion
    payload: bytes
    offset: int = 0
    declared_length: int = 0

    @property
    def truncated(self) -> bool:
        return len(self.payload) < self.declared_length


@dataclass
class DecodeResult:
    """Everything decoded from one file, plus the error that stopped it."""
    path: Optional[Path]
    records: List[Record] = field(default_factory=list)
    error: Optional[DecodeError] = None

    @property
    def partial(self) -> bool:
        return isinstance(self.error, TruncatedRecordError)

    @property
    def ok(self) -> bool:
        return self.error is None


def record_size(version: FormatVersion) -> int:
    """Size of the fixed-width fields following the path."""
    size = EVENT_FIELDS.size
    if version.has_node_id:
        size += NODE_ID.size
    if version.has_extra_id:
        size += EXTRA_ID.size
    return size


@contextmanager
def open_journal(path: Path) -> Generator[IO[bytes], None, None]:
    """
    Context manager yielding the decompressed byte stream of a journal.

    - gzip magic: read as a (possibly multi-member) gzip stream
    - zstd magic: read across every zstd frame
    - anything else: read as-is

    Raises:
        FileAccessError: If the file cannot be opened
    """
    path = Path(path)
    try:
        raw = open(path, "rb")
    except OSError as e:
        raise FileAccessError(f"Cannot open {path}: {e.strerror or e}", path=path) from e

    try:
        head = raw.read(4)
        raw.seek(0)

        if head[:2] == GZIP_MAGIC:
            stream = gzip.GzipFile(fileobj=raw, mode="rb")
        elif head == ZSTD_MAGIC:
            dctx = zstandard.ZstdDecompressor()
            stream = dctx.stream_reader(raw, read_across_frames=True, closefd=False)
        else:
            stream = raw

        try:
            yield stream
        finally:
            if stream is not raw:
                stream.close()
    finally:
        raw.close()


def _read(stream: IO[bytes], size: int, path: Optional[Path], offset: int) -> bytes:
    """Read up to ``size`` bytes, short only at end of stream."""
    chunks = []
    remaining = size
    try:
        while remaining > 0:
            chunk = stream.read(remaining)
            if not chunk:
                break
            chunks.append(chunk)
            remaining -= len(chunk)
    except _CODEC_ERRORS as e:
        raise CorruptArchiveError(
            f"Decompression failed near offset {offset}: {e}", path=path, offset=offset
        ) from e
    except OSError as e:
        raise FileAccessError(f"Read failed: {e}", path=path) from e
    return b"".join(chunks)


def iter_pages(
    stream: IO[bytes],
    path: Optional[Path] = None,
    stop_event: Optional[threading.Event] = None,
    on_stop: Optional[Callable[[int], None]] = None,
) -> Iterator[RawPage]:
    """
    Yield the pages of a decompressed journal stream.

    The stop event is checked before each page, never inside one. When a
    stop leaves pages unread, on_stop is called with the offset reached.

    Raises:
        UnknownPageVersionError: Unrecognised page magic
        TruncatedRecordError: Partial page header or page length below header size
        CorruptArchiveError: Decompression failure
    """
    offset = 0
    while True:
        header = _read(stream, PAGE_HEADER_SIZE, path, offset)
        if not header:
            return
        if stop_event is not None and stop_event.is_set():
            logger.debug(f"Stop requested, leaving {path} at offset {offset}")
            if on_stop is not None:
                on_stop(offset)
            return
        if len(header) < PAGE_HEADER_SIZE:
            raise TruncatedRecordError(
                f"Partial page header ({len(header)} bytes) at offset {offset}",
                path=path,
                offset=offset,
            )

        magic, _, length = PAGE_HEADER.unpack(header)
        version = FormatVersion.from_magic(magic)
        if version is None:
            raise UnknownPageVersionError(
                f"Unsupported page magic {magic!r} at offset {offset}",
                magic=magic,
                path=path,
                offset=offset,
            )
        if length < PAGE_HEADER_SIZE:
            raise TruncatedRecordError(
                f"Page length {length} at offset {offset} is smaller than its header",
                path=path,
                offset=offset,
            )

        declared = length - PAGE_HEADER_SIZE
        payload = _read(stream, declared, path, offset + PAGE_HEADER_SIZE)
        logger.debug(f"{version.name} page at {offset}: {declared} bytes")

        yield RawPage(version, payload, offset, declared)
        offset += PAGE_HEADER_SIZE + len(payload)


def iter_page_records(page: RawPage, path: Optional[Path] = None) -> Iterator[Record]:
    """
    Yield every record of a page in storage order.

    Raises:
        TruncatedRecordError: After the last complete record, if the page
            ends inside a record or is shorter than its declared length
    """
    data = page.payload
    end = len(data)
    fixed = record_size(page.version)
    has_node_id = page.version.has_node_id
    has_extra_id = page.version.has_extra_id
    pos = 0

    while pos < end:
        nul = data.find(b"\x00", pos)
        if nul < 0 or nul + 1 + fixed > end:
            raise TruncatedRecordError(
                f"Record cut short at page offset {pos} ({end - pos} bytes left)",
                path=path,
                offset=page.offset + PAGE_HEADER_SIZE + pos,
            )

        name = data[pos:nul].decode("utf-8", errors="replace")
        pos = nul + 1
        event_id, flags = EVENT_FIELDS.unpack_from(data, pos)
        pos += EVENT_FIELDS.size

        node_id = extra_id = None
        if has_node_id:
            (node_id,) = NODE_ID.unpack_from(data, pos)
            pos += NODE_ID.size
        if has_extra_id:
            (extra_id,) = EXTRA_ID.unpack_from(data, pos)
            pos += EXTRA_ID.size

        yield Record(name, event_id, flags, page.version, node_id, extra_id)

    if page.truncated:
        raise TruncatedRecordError(
            f"Page at offset {page.offset} declared {page.declared_length} bytes, "
            f"stream ended after {end}",
            path=path,
            offset=page.offset,
        )


def iter_records(
    stream: IO[bytes],
    path: Optional[Path] = None,
    stop_event: Optional[threading.Event] = None,
    on_stop: Optional[Callable[[int], None]] = None,
) -> Iterator[Record]:
    """Yield every record of a decompressed journal stream."""
    for page in iter_pages(stream, path, stop_event, on_stop):
        yield from iter_page_records(page, path)


def decode_file(path: Path, stop_event: Optional[threading.Event] = None) -> Iterator[Record]:
    """
    Lazily decode a journal file.

    Restartable per file: call again to decode from the beginning.
    """
    path = Path(path)
    logger.debug(f"Decoding {path}")
    with open_journal(path) as stream:
        yield from iter_records(stream, path, stop_event)


def decode_all(path: Path) -> DecodeResult:
    """
    Decode a whole file, keeping what was read before any decode error.

    Raises:
        FileAccessError: If the file cannot be opened
    """
    result = DecodeResult(Path(path))
    try:
        for record in decode_file(path):
            result.records.append(record)
    except DecodeError as e:
        result.error = e
    return result
