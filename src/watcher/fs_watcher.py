"""File system watcher using watchdog library."""

import logging
import threading
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.polling import PollingObserver

from .config import WatcherConfig
from .exceptions import RootNotFoundError
from .models import RawFSEvent

logger = logging.getLogger(__name__)


class FSEventHandler(FileSystemEventHandler):
    """Handler that turns watchdog events on journal files into RawFSEvent."""

    def __init__(
        self,
        callback: Callable[[RawFSEvent], None],
        config: WatcherConfig,
        root: Path,
    ):
        super().__init__()
        self.callback = callback
        self.config = config
        self.root = root

    def _is_candidate(self, path: str) -> bool:
        """Check if the path is a file worth parsing once it settles."""
        return self.config.is_candidate(Path(path))

    def _emit(self, event_type: str, src_path: Path, dest_path: Optional[Path] = None):
        """Emit a RawFSEvent to the callback."""
        target = dest_path if dest_path is not None else src_path
        if not self._is_candidate(str(target)):
            logger.debug(f"Ignoring {event_type} on {target}")
            return

        raw_event = RawFSEvent(
            event_type=event_type,
            src_path=src_path,
            dest_path=dest_path,
            timestamp=time.time(),
        )
        self.callback(raw_event)

    def on_created(self, event):
        if event.is_directory:
            return
        self._emit("created", Path(event.src_path))

    def on_modified(self, event):
        if event.is_directory:
            return
        self._emit("modified", Path(event.src_path))

    def on_moved(self, event):
        # Only the destination carries new content
        if event.is_directory:
            return
        self._emit("moved", Path(event.src_path), Path(event.dest_path))

    def on_closed(self, event):
        if event.is_directory:
            return
        self._emit("closed", Path(event.src_path))


class FSWatcherPool:
    """
    Manages multiple watchdog observers, one per journal directory.

    Provides a unified interface for starting and stopping
    watchers for multiple root directories.
    """

    def __init__(
        self,
        event_callback: Callable[[RawFSEvent], None],
        config: Optional[WatcherConfig] = None,
    ):
        """
        Initialize the watcher pool.

        Args:
            event_callback: Callback function for raw filesystem events
            config: Watcher configuration
        """
        self.event_callback = event_callback
        self.config = config or WatcherConfig()
        self._observers: Dict[Path, Observer] = {}
        self._lock = threading.Lock()

    def _new_observer(self):
        if self.config.polling:
            return PollingObserver(timeout=self.config.flush_interval_ms / 1000.0)
        return Observer()

    def start_watching(self, root: Path) -> bool:
        """
        Start watching a root directory.

        Args:
            root: Path to the root directory

        Returns:
            True if watching started, False if already watching

        Raises:
            RootNotFoundError: If root is not an existing directory
        """
        root = Path(root).resolve()
        if not root.is_dir():
            raise RootNotFoundError(f"Watch root does not exist: {root}")

        with self._lock:
            if root in self._observers:
                return False

            observer = self._new_observer()
            handler = FSEventHandler(self.event_callback, self.config, root)
            observer.schedule(
                handler,
                str(root),
                recursive=self.config.recursive,
            )
            observer.start()

            self._observers[root] = observer
            logger.info(f"Watching {root}{' (polling)' if self.config.polling else ''}")
            return True

    def stop_watching(self, root: Path) -> bool:
        """
        Stop watching a root directory.

        Returns:
            True if watching stopped, False if not watching
        """
        root = Path(root).resolve()

        with self._lock:
            if root not in self._observers:
                return False

            observer = self._observers.pop(root)
            observer.stop()
            observer.join(timeout=5.0)
            return True

    def stop_all(self) -> int:
        """
        Stop all watchers.

        Returns:
            Number of watchers stopped
        """
        with self._lock:
            count = len(self._observers)

            for observer in self._observers.values():
                observer.stop()

            for observer in self._observers.values():
                observer.join(timeout=5.0)

            self._observers.clear()
            return count

    def is_watching(self, root: Path) -> bool:
        root = Path(root).resolve()
        with self._lock:
            return root in self._observers

    def get_watched_roots(self) -> List[Path]:
        with self._lock:
            return list(self._observers.keys())

    def __len__(self) -> int:
        """Return the number of active watchers."""
        with self._lock:
            return len(self._observers)
