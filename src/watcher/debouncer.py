"""
Settle debouncing for journal files that are still being written.

A file moves IDLE -> PENDING on its first change, stays PENDING while
changes keep arriving, and becomes SETTLED once it has been quiet for the
debounce window. Settled paths are handed out exactly once; after
``cancel()`` every path reports CANCELLED and nothing is handed out.
"""

import threading
from pathlib import Path
from typing import Dict, List, Optional, Set

from .models import PendingFile, SettleState


class SettleDebouncer:
    """Coalesces bursts of changes on a file into a single settle event."""

    def __init__(self, debounce_ms: int = 1000):
        """
        Initialize the debouncer.

        Args:
            debounce_ms: Quiet period in milliseconds before a file settles
        """
        self.debounce_ms = debounce_ms
        self._pending: Dict[Path, PendingFile] = {}
        self._settled: Set[Path] = set()
        self._processed: Set[Path] = set()
        self._cancelled = False
        self._lock = threading.Lock()

    @property
    def window(self) -> float:
        return self.debounce_ms / 1000.0

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def touch(self, path: Path, timestamp: float) -> bool:
        """
        Record a change on path, (re)starting its timer.

        Returns:
            True if the path is now pending, False if it was ignored
            because it is already processed or the debouncer is cancelled
        """
        path = Path(path)
        with self._lock:
            if self._cancelled or path in self._processed or path in self._settled:
                return False

            pending = self._pending.get(path)
            if pending is None:
                self._pending[path] = PendingFile(path, first_seen=timestamp, last_seen=timestamp)
            else:
                pending.last_seen = max(pending.last_seen, timestamp)
                pending.touches += 1
            return True

    def flush(self, current_time: float) -> List[Path]:
        """
        Collect files that have been quiet for the debounce window.

        Args:
            current_time: Current timestamp

        Returns:
            Newly settled paths, oldest first
        """
        with self._lock:
            if self._cancelled:
                return []
            ready = [
                pending for pending in self._pending.values()
                if pending.quiet_for(current_time) >= self.window
            ]
            return self._settle(ready)

    def flush_all(self) -> List[Path]:
        """Settle every pending file regardless of time."""
        with self._lock:
            if self._cancelled:
                return []
            return self._settle(list(self._pending.values()))

    def _settle(self, ready: List[PendingFile]) -> List[Path]:
        ready.sort(key=lambda pending: pending.first_seen)
        for pending in ready:
            del self._pending[pending.path]
            self._settled.add(pending.path)
        return [pending.path for pending in ready]

    def mark_processed(self, path: Path) -> None:
        """Record that a settled file was parsed; it will not settle again."""
        path = Path(path)
        with self._lock:
            self._settled.discard(path)
            self._pending.pop(path, None)
            self._processed.add(path)

    def claim(self, path: Path) -> bool:
        """
        Take ownership of path for an immediate parse.

        Returns:
            False if the path was already processed or is already queued
        """
        path = Path(path)
        with self._lock:
            if self._cancelled or path in self._processed or path in self._settled:
                return False
            self._pending.pop(path, None)
            self._settled.add(path)
            return True

    def forget(self, path: Path) -> None:
        """Drop every record of path so a later change can trigger it again."""
        path = Path(path)
        with self._lock:
            self._pending.pop(path, None)
            self._settled.discard(path)
            self._processed.discard(path)

    def state(self, path: Path) -> SettleState:
        path = Path(path)
        with self._lock:
            if self._cancelled:
                return SettleState.CANCELLED
            if path in self._pending:
                return SettleState.PENDING
            if path in self._settled:
                return SettleState.SETTLED
            return SettleState.IDLE

    def is_processed(self, path: Path) -> bool:
        with self._lock:
            return Path(path) in self._processed

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def next_deadline(self) -> Optional[float]:
        """Earliest time at which a pending file could settle."""
        with self._lock:
            if not self._pending:
                return None
            return min(p.last_seen for p in self._pending.values()) + self.window

    def cancel(self) -> None:
        """Enter the terminal state; pending files are discarded."""
        with self._lock:
            self._cancelled = True
            self._pending.clear()
