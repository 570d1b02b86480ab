"""Data models for the watch engine."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional
import time


class SettleState(Enum):
    """Debounce state of a watched file."""
    IDLE = "idle"
    PENDING = "pending"
    SETTLED = "settled"
    CANCELLED = "cancelled"


@dataclass
class RawFSEvent:
    """
    Raw event from the filesystem watcher before debouncing.

    Attributes:
        event_type: Raw event type string (created, modified, moved, closed)
        src_path: Source path of the event
        dest_path: Destination path (for move events)
        is_directory: Whether this is a directory event
        timestamp: Unix timestamp when the event occurred
    """
    event_type: str
    src_path: Path
    dest_path: Optional[Path] = None
    is_directory: bool = False
    timestamp: float = field(default_factory=time.time)

    @property
    def target(self) -> Path:
        """The path whose content changed."""
        return self.dest_path if self.dest_path is not None else self.src_path


@dataclass
class PendingFile:
    """A file waiting for its debounce window to elapse."""
    path: Path
    first_seen: float
    last_seen: float
    touches: int = 1

    def quiet_for(self, current_time: float) -> float:
        return current_time - self.last_seen
