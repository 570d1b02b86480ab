"""
FSEvents Journal Package

Decodes macOS ``.fseventsd`` journal files into records and writes them
out in bulk.

Features:
- V1, V2 and V3 page decoding from gzip, zstd or raw streams
- Flag mask decoding with the standard and alternate name tables
- Path regex and any/all flag filtering
- Unique-path aggregation
- CSV, JSON and YAML output with optional gzip or zstd compression
- Sequential or parallel processing with per-file and combined outputs
"""

from .flags import (
    FLAGS,
    ALT_FLAGS,
    FlagSet,
    decode,
    flag_value,
    flags_to_mask,
    name_to_bit,
)

from .models import (
    FormatVersion,
    Record,
    UniqueEntry,
    FileStatus,
    FileReport,
    RunReport,
)

from .config import (
    OutputFormat,
    Compression,
    RecordFormat,
    OutputSpec,
    ParseConfig,
)

from .exceptions import (
    FseError,
    ConfigError,
    UnknownFlagError,
    FileAccessError,
    DecodeError,
    CorruptArchiveError,
    UnknownPageVersionError,
    TruncatedRecordError,
    WriteError,
)

from .decoder import RawPage, DecodeResult, open_journal, iter_pages, iter_records, decode_file, decode_all
from .filters import RecordFilter
from .uniques import UniqueAggregator
from .writers import RecordWriter, record_fieldnames, unique_fieldnames
from .discovery import discover_files, is_journal_name
from .pipeline import Pipeline, FanOut, SinkChannel


__all__ = [
    # Flags
    "FLAGS",
    "ALT_FLAGS",
    "FlagSet",
    "decode",
    "flag_value",
    "flags_to_mask",
    "name_to_bit",
    # Models
    "FormatVersion",
    "Record",
    "UniqueEntry",
    "FileStatus",
    "FileReport",
    "RunReport",
    # Config
    "OutputFormat",
    "Compression",
    "RecordFormat",
    "OutputSpec",
    "ParseConfig",
    # Exceptions
    "FseError",
    "ConfigError",
    "UnknownFlagError",
    "FileAccessError",
    "DecodeError",
    "CorruptArchiveError",
    "UnknownPageVersionError",
    "TruncatedRecordError",
    "WriteError",
    # Components
    "RawPage",
    "DecodeResult",
    "open_journal",
    "iter_pages",
    "iter_records",
    "decode_file",
    "decode_all",
    "RecordFilter",
    "UniqueAggregator",
    "RecordWriter",
    "record_fieldnames",
    "unique_fieldnames",
    "discover_files",
    "is_journal_name",
    "Pipeline",
    "FanOut",
    "SinkChannel",
]

__version__ = "2.1.8"
