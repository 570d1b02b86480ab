"""Data models for the fsevents package."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from . import flags as fl
from .config import RecordFormat


class FormatVersion(Enum):
    """Journal page versions, keyed by their 4-byte magic."""
    V1 = b"1SLD"
    V2 = b"2SLD"
    V3 = b"3SLD"

    @property
    def magic(self) -> bytes:
        return self.value

    @property
    def has_node_id(self) -> bool:
        return self is not FormatVersion.V1

    @property
    def has_extra_id(self) -> bool:
        return self is FormatVersion.V3

    @classmethod
    def from_magic(cls, magic: bytes) -> Optional["FormatVersion"]:
        """Look up a version by magic, None if unrecognised."""
        try:
            return cls(bytes(magic))
        except ValueError:
            return None


@dataclass(frozen=True)
class Record:
    """
    One decoded journal entry.

    Attributes:
        path: Affected path, decoded lossily from the on-disk bytes
        event_id: 64-bit event identifier
        flags: 32-bit flag mask
        version: Version of the page the record came from
        node_id: Inode number (V2 and V3 pages only)
        extra_id: Trailing identifier (V3 pages only)
    """
    path: str
    event_id: int
    flags: int
    version: FormatVersion = FormatVersion.V1
    node_id: Optional[int] = None
    extra_id: Optional[int] = None

    def __post_init__(self):
        if self.version.has_node_id != (self.node_id is not None):
            raise ValueError(f"node_id presence does not match {self.version.name}")
        if self.version.has_extra_id != (self.extra_id is not None):
            raise ValueError(f"extra_id presence does not match {self.version.name}")

    def flag_set(self, alt: bool = False) -> fl.FlagSet:
        return fl.decode(self.flags, alt)

    def to_row(self, fmt: Optional[RecordFormat] = None) -> Dict[str, object]:
        """Convert to an ordered mapping for serialisation."""
        fmt = fmt or RecordFormat()
        row: Dict[str, object] = {
            "path": self.path,
            "event_id": fmt.render_id(self.event_id),
            "flags": fl.format_flags(self.flags),
        }
        if fmt.alt_flags:
            row["alt_flags"] = fl.format_flags(self.flags, alt=True)
        row["node_id"] = fmt.render_id(self.node_id)
        if fmt.extra_id:
            row["extra_id"] = fmt.render_id(self.extra_id)
        return row


@dataclass
class UniqueEntry:
    """Per-path summary built by the aggregation engine."""
    path: str
    count: int = 0
    combined_flags: int = 0

    def update(self, flags: int) -> None:
        self.count += 1
        self.combined_flags |= flags

    def to_row(self, fmt: Optional[RecordFormat] = None) -> Dict[str, object]:
        fmt = fmt or RecordFormat()
        row: Dict[str, object] = {
            "path": self.path,
            "counts": self.count,
            "flags": fl.format_flags(self.combined_flags),
        }
        if fmt.alt_flags:
            row["alt_flags"] = fl.format_flags(self.combined_flags, alt=True)
        return row


class FileStatus(Enum):
    """Outcome of processing one input file."""
    OK = "ok"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class FileReport:
    """
    Result of processing one input file.

    Attributes:
        path: Input path
        status: OK, PARTIAL (truncated or cancelled, records kept), FAILED,
            or SKIPPED (never started)
        records_decoded: Records decoded before any error
        records_emitted: Records that passed the filter
        error_kind: Exception class name when status is not OK
        error: Exception message when status is not OK
    """
    path: Path
    status: FileStatus = FileStatus.OK
    records_decoded: int = 0
    records_emitted: int = 0
    error_kind: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is FileStatus.OK

    def to_dict(self) -> dict:
        return {
            "path": str(self.path),
            "status": self.status.value,
            "records_decoded": self.records_decoded,
            "records_emitted": self.records_emitted,
            "error_kind": self.error_kind,
            "error": self.error,
        }


@dataclass
class RunReport:
    """Per-run summary: one FileReport per input, in input order."""
    files: List[FileReport] = field(default_factory=list)
    unique_paths: int = 0

    @property
    def succeeded(self) -> List[FileReport]:
        return [f for f in self.files if f.ok]

    @property
    def failed(self) -> List[FileReport]:
        return [f for f in self.files if not f.ok]

    @property
    def records_emitted(self) -> int:
        return sum(f.records_emitted for f in self.files)

    @property
    def exit_code(self) -> int:
        return 0 if not self.failed else 1

    def get(self, path: Path) -> Optional[FileReport]:
        for report in self.files:
            if report.path == path:
                return report
        return None
