"""
Streaming record output in CSV, JSON and YAML, optionally compressed.

A RecordWriter picks its serialiser and codec once, at construction, from
the tables below. Records are written as they arrive; nothing is buffered
beyond what the codec itself holds.
"""

import csv
import gzip
import io
import json
import logging
import sys
from pathlib import Path
from typing import IO, Dict, Iterable, List, Mapping, Optional, Sequence

import yaml
import zstandard

from .config import Compression, OutputFormat, OutputSpec, RecordFormat
from .exceptions import WriteError

logger = logging.getLogger(__name__)

_WRITE_ERRORS = (OSError, ValueError, zstandard.ZstdError)


def record_fieldnames(fmt: Optional[RecordFormat] = None) -> List[str]:
    """Column order for combined and per-file record output."""
    fmt = fmt or RecordFormat()
    names = ["path", "event_id", "flags"]
    if fmt.alt_flags:
        names.append("alt_flags")
    names.append("node_id")
    if fmt.extra_id:
        names.append("extra_id")
    return names


def unique_fieldnames(fmt: Optional[RecordFormat] = None) -> List[str]:
    """Column order for unique-path output."""
    fmt = fmt or RecordFormat()
    names = ["path", "counts", "flags"]
    if fmt.alt_flags:
        names.append("alt_flags")
    return names


def _open_plain(raw: IO[bytes], spec: OutputSpec) -> Optional[IO[bytes]]:
    return None


def _open_gzip(raw: IO[bytes], spec: OutputSpec) -> IO[bytes]:
    filename = "" if spec.is_stdout else None
    return gzip.GzipFile(filename=filename, fileobj=raw, mode="wb", compresslevel=spec.gzip_level)


def _open_zstd(raw: IO[bytes], spec: OutputSpec) -> IO[bytes]:
    cctx = zstandard.ZstdCompressor(level=spec.zstd_level, threads=spec.zstd_threads)
    return cctx.stream_writer(raw, closefd=False)


_CODECS = {
    Compression.NONE: _open_plain,
    Compression.GZIP: _open_gzip,
    Compression.ZSTD: _open_zstd,
}


class RecordWriter:
    """
    Writes row mappings to one destination.

    Usage:
        with RecordWriter(spec, record_fieldnames()) as writer:
            for record in records:
                writer.write(record.to_row())
    """

    def __init__(self, spec: OutputSpec, fieldnames: Sequence[str]):
        """
        Initialize the writer.

        Args:
            spec: Output format, destination and codec settings
            fieldnames: Column order; rows are written in this key order
        """
        if spec.destination is None:
            raise WriteError("Output spec has no destination")

        self.spec = spec
        self.fieldnames = list(fieldnames)
        self.format = spec.format
        self.compression = spec.resolved_compression()

        self._begin, self._emit, self._finish = {
            OutputFormat.CSV: (self._csv_begin, self._csv_write, self._csv_finish),
            OutputFormat.JSON: (self._json_begin, self._json_write, self._json_finish),
            OutputFormat.YAML: (self._yaml_begin, self._yaml_write, self._yaml_finish),
        }[self.format]
        self._open_codec = _CODECS[self.compression]

        self._raw: Optional[IO[bytes]] = None
        self._codec: Optional[IO[bytes]] = None
        self._text: Optional[io.TextIOWrapper] = None
        self._csv: Optional[csv.DictWriter] = None
        self._count = 0
        self._closed = False

    @property
    def destination(self):
        return self.spec.destination

    @property
    def records_written(self) -> int:
        return self._count

    @property
    def is_open(self) -> bool:
        return self._text is not None and not self._closed

    def open(self) -> "RecordWriter":
        """Acquire the destination and write any document preamble."""
        if self._text is not None:
            return self

        try:
            if self.spec.is_stdout:
                self._raw = sys.stdout.buffer
            else:
                dest = Path(self.spec.destination)
                dest.parent.mkdir(parents=True, exist_ok=True)
                self._raw = open(dest, "wb")

            self._codec = self._open_codec(self._raw, self.spec)
            self._text = io.TextIOWrapper(
                self._codec or self._raw, encoding="utf-8", newline="", write_through=False
            )
            self._begin()
        except _WRITE_ERRORS as e:
            self._release()
            raise WriteError(f"Cannot open {self.destination}: {e}", self.destination) from e

        logger.debug(
            f"Opened {self.format.value} writer ({self.compression.value}) -> {self.destination}"
        )
        return self

    def write(self, row: Mapping[str, object]) -> None:
        """Serialise one row."""
        if self._closed:
            raise WriteError(f"Writer for {self.destination} is closed", self.destination)
        if self._text is None:
            self.open()
        try:
            self._emit(row)
            if self.spec.continuous:
                self._text.flush()
        except _WRITE_ERRORS as e:
            raise WriteError(f"Write to {self.destination} failed: {e}", self.destination) from e
        self._count += 1

    def write_all(self, rows: Iterable[Mapping[str, object]]) -> int:
        written = 0
        for row in rows:
            self.write(row)
            written += 1
        return written

    def close(self) -> None:
        """Finish the document, flush the codec and release the destination."""
        if self._closed:
            return
        if self._text is None:
            self.open()
        self._closed = True

        try:
            self._finish()
            self._text.flush()
            self._text.detach()
            self._text = None
            if self._codec is not None:
                self._codec.close()
                self._codec = None
        except _WRITE_ERRORS as e:
            raise WriteError(f"Closing {self.destination} failed: {e}", self.destination) from e
        finally:
            self._release()

        logger.debug(f"Closed {self.destination} after {self._count} records")

    def _release(self) -> None:
        """Release handles without writing anything further."""
        text, self._text = self._text, None
        if text is not None:
            try:
                text.detach()
            except _WRITE_ERRORS:
                pass
        raw, self._raw = self._raw, None
        if raw is None:
            return
        try:
            if self.spec.is_stdout:
                raw.flush()
            else:
                raw.close()
        except _WRITE_ERRORS as e:
            logger.warning(f"Error releasing {self.destination}: {e}")

    def abort(self) -> None:
        """Close after a failure, logging rather than raising close errors."""
        try:
            self.close()
        except WriteError as e:
            logger.warning(f"Error closing {self.destination}: {e}")

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            self.close()
        else:
            self.abort()
        return False

    # CSV

    def _csv_begin(self) -> None:
        self._csv = csv.DictWriter(self._text, fieldnames=self.fieldnames, extrasaction="ignore")
        self._csv.writeheader()

    def _csv_write(self, row: Mapping[str, object]) -> None:
        self._csv.writerow(row)

    def _csv_finish(self) -> None:
        pass

    # JSON

    def _json_dumps(self, row: Mapping[str, object]) -> str:
        ordered: Dict[str, object] = {k: row.get(k) for k in self.fieldnames}
        return json.dumps(ordered, indent=2 if self.spec.pretty else None, ensure_ascii=False)

    def _json_begin(self) -> None:
        if not self.spec.continuous:
            self._text.write("[")

    def _json_write(self, row: Mapping[str, object]) -> None:
        if self.spec.continuous:
            self._text.write(self._json_dumps(row) + "\n")
            return
        sep = "," if self._count else ""
        self._text.write(f"{sep}\n{self._json_dumps(row)}")

    def _json_finish(self) -> None:
        if not self.spec.continuous:
            self._text.write("\n]\n" if self._count else "]\n")

    # YAML

    def _yaml_begin(self) -> None:
        pass

    def _yaml_write(self, row: Mapping[str, object]) -> None:
        ordered = {k: row.get(k) for k in self.fieldnames}
        if self.spec.continuous:
            doc = yaml.safe_dump(
                ordered, sort_keys=False, allow_unicode=True, explicit_start=True
            )
        else:
            doc = yaml.safe_dump(
                [ordered], sort_keys=False, allow_unicode=True, default_flow_style=False
            )
        self._text.write(doc)

    def _yaml_finish(self) -> None:
        if not self.spec.continuous and not self._count:
            self._text.write("[]\n")
