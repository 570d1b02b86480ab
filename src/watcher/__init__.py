"""
Journal Watcher Package

Watches ``.fseventsd`` directories and parses each new journal file once
it has stopped changing, streaming its records to a continuous output.

Features:
- Native or polling watchdog observers, one per root
- Hex-name candidate filtering and ignore patterns
- Settle debouncing so files are never read mid-write
- Each journal file parsed at most once
- Parsing on a worker pool through the batch pipeline
"""

from .models import (
    SettleState,
    RawFSEvent,
    PendingFile,
)

from .config import WatcherConfig

from .exceptions import (
    WatcherError,
    RootNotFoundError,
    WatcherNotRunningError,
    WatcherAlreadyRunningError,
)

from .fs_watcher import FSWatcherPool, FSEventHandler
from .debouncer import SettleDebouncer
from .process import WatchProcess


__all__ = [
    # Models
    "SettleState",
    "RawFSEvent",
    "PendingFile",
    # Config
    "WatcherConfig",
    # Exceptions
    "WatcherError",
    "RootNotFoundError",
    "WatcherNotRunningError",
    "WatcherAlreadyRunningError",
    # Components
    "FSWatcherPool",
    "FSEventHandler",
    "SettleDebouncer",
    # Main Process
    "WatchProcess",
]
