"""
Configuration for the fsevents package.
"""

import os
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import List, Optional, Union

from .exceptions import ConfigError
from .filters import RecordFilter

STDOUT = "-"


class OutputFormat(Enum):
    """Serialisation formats for record output."""
    CSV = "csv"
    JSON = "json"
    YAML = "yaml"

    @property
    def extension(self) -> str:
        return self.value


class Compression(Enum):
    """Streaming compression codecs."""
    NONE = "none"
    GZIP = "gzip"
    ZSTD = "zstd"

    @property
    def extension(self) -> str:
        return {"none": "", "gzip": ".gz", "zstd": ".zst"}[self.value]

    @classmethod
    def from_path(cls, path: Union[Path, str, None]) -> "Compression":
        """Infer the codec from a destination's extension."""
        if path is None or str(path) == STDOUT:
            return cls.NONE
        suffix = Path(path).suffix.lower()
        if suffix in (".gz", ".gzip"):
            return cls.GZIP
        if suffix in (".zst", ".zstd"):
            return cls.ZSTD
        return cls.NONE


@dataclass(frozen=True)
class RecordFormat:
    """
    Per-run rendering options for records.

    Attributes:
        hex_ids: Render event/node/extra ids as ``0x``-prefixed uppercase hex
        alt_flags: Add an ``alt_flags`` column using the alternate name table
        extra_id: Include the ``extra_id`` column
    """
    hex_ids: bool = False
    alt_flags: bool = False
    extra_id: bool = True

    def render_id(self, value: Optional[int]):
        if value is None:
            return None
        if self.hex_ids:
            return f"0x{value:X}"
        return value


@dataclass
class OutputSpec:
    """
    One requested output sink.

    Attributes:
        format: Serialisation format
        destination: Output path, ``"-"`` for standard output, or None for
            a per-file template whose path is derived from each input
        compression: Codec, or None to infer it from the destination extension
        gzip_level: gzip compression level (0-9)
        zstd_level: zstd compression level (0-20)
        zstd_threads: zstd worker threads, 0 disables multithreading
        continuous: Emit one document per record instead of one document per run
        pretty: Indent JSON output
    """
    format: OutputFormat = OutputFormat.CSV
    destination: Optional[Union[Path, str]] = None
    compression: Optional[Compression] = None
    gzip_level: int = 7
    zstd_level: int = 3
    zstd_threads: int = 2
    continuous: bool = False
    pretty: bool = False

    def __post_init__(self):
        if isinstance(self.format, str):
            try:
                self.format = OutputFormat(self.format.lower())
            except ValueError:
                raise ConfigError(f"Unsupported output format: {self.format}") from None
        if isinstance(self.compression, str):
            try:
                self.compression = Compression(self.compression.lower())
            except ValueError:
                raise ConfigError(f"Unsupported compression: {self.compression}") from None
        if isinstance(self.destination, str) and self.destination != STDOUT:
            self.destination = Path(self.destination)
        if not 0 <= self.gzip_level <= 9:
            raise ConfigError(f"gzip level must be between 0 and 9, got {self.gzip_level}")
        if not 0 <= self.zstd_level <= 20:
            raise ConfigError(f"zstd level must be between 0 and 20, got {self.zstd_level}")
        if self.zstd_threads < 0:
            raise ConfigError(f"zstd threads must not be negative, got {self.zstd_threads}")

    @property
    def is_stdout(self) -> bool:
        return self.destination == STDOUT

    def resolved_compression(self) -> Compression:
        """The codec to use: explicit choice first, then the destination extension."""
        if self.compression is not None:
            return self.compression
        return Compression.from_path(self.destination)

    def for_input(self, input_path: Path) -> "OutputSpec":
        """
        Derive the per-file output spec for one input journal.

        The destination is the input path plus the format extension and,
        when the template compresses, the codec extension.
        """
        codec = self.compression or Compression.NONE
        dest = Path(f"{input_path}.{self.format.extension}{codec.extension}")
        return replace(self, destination=dest, compression=codec)


def default_workers() -> int:
    env = os.environ.get("FSE_DUMP_WORKERS")
    if env:
        try:
            return max(1, int(env))
        except ValueError:
            pass
    return os.cpu_count() or 1


@dataclass
class ParseConfig:
    """Main configuration for one dump run."""
    record_filter: RecordFilter = field(default_factory=RecordFilter)

    # Only consider files modified within this many days (discovery only)
    days: Optional[int] = None

    # Processing
    parallel: bool = False
    workers: int = field(default_factory=default_workers)
    queue_size: int = 64

    # Rendering
    record_format: RecordFormat = field(default_factory=RecordFormat)

    # Sinks
    combined: List[OutputSpec] = field(default_factory=list)
    uniques: List[OutputSpec] = field(default_factory=list)
    per_file: List[OutputSpec] = field(default_factory=list)

    def __post_init__(self):
        if self.workers < 1:
            raise ConfigError(f"workers must be at least 1, got {self.workers}")
        if self.queue_size < 1:
            raise ConfigError(f"queue_size must be at least 1, got {self.queue_size}")
        if self.days is not None and self.days < 0:
            raise ConfigError(f"days must not be negative, got {self.days}")
        for spec in self.per_file:
            if spec.destination is not None:
                raise ConfigError("Per-file outputs derive their destination from each input")
        if sum(1 for spec in self.combined + self.uniques if spec.is_stdout) > 1:
            raise ConfigError("Only one output may be written to standard output")

    @property
    def has_outputs(self) -> bool:
        return bool(self.combined or self.uniques or self.per_file)
