"""Main watch process orchestrator."""

import logging
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, List, Optional

from src.fsevents.config import ParseConfig
from src.fsevents.exceptions import WriteError
from src.fsevents.models import FileReport
from src.fsevents.pipeline import FanOut, Pipeline

from .config import WatcherConfig
from .debouncer import SettleDebouncer
from .exceptions import (
    WatcherError,
    WatcherNotRunningError,
    WatcherAlreadyRunningError,
)
from .fs_watcher import FSWatcherPool
from .models import RawFSEvent

logger = logging.getLogger(__name__)

_STOP = object()


class WatchProcess:
    """
    Main orchestrator for watch mode.

    Watchdog notifications feed a SettleDebouncer. A flush thread moves
    settled journal files onto a blocking queue, and a dispatch thread
    hands each one to the batch Pipeline running on a worker pool. All
    records go to a single continuous output sink.
    """

    def __init__(
        self,
        config: Optional[WatcherConfig] = None,
        parse_config: Optional[ParseConfig] = None,
        on_report: Optional[Callable[[FileReport], None]] = None,
    ):
        """
        Initialize the watch process.

        Args:
            config: Watcher configuration (roots, debounce, output sink)
            parse_config: Filter and record formatting shared with batch mode;
                its combined and uniques outputs are not used
            on_report: Called with each file's report after it is parsed
        """
        self.config = config or WatcherConfig()
        self.parse_config = parse_config or ParseConfig()
        self.on_report = on_report

        # Own stop event so a shutdown never cuts a file short
        self.pipeline = Pipeline(self.parse_config)
        self.debouncer = SettleDebouncer(self.config.debounce_ms)

        self._fs_watcher_pool = FSWatcherPool(self._on_raw_event, self.config)
        self._fanout: Optional[FanOut] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._settled: "queue.Queue" = queue.Queue()
        self._reports: List[FileReport] = []
        self._error: Optional[WriteError] = None

        self._running = False
        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = []
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        """Check if the watch process is running."""
        return self._running

    @property
    def error(self) -> Optional[WriteError]:
        """The output failure that stopped the process, if any."""
        return self._error

    @property
    def reports(self) -> List[FileReport]:
        """Reports for every file parsed so far, in completion order."""
        with self._lock:
            return list(self._reports)

    def get_watched_roots(self) -> List[Path]:
        return self._fs_watcher_pool.get_watched_roots()

    def start(self) -> None:
        """
        Start watching (blocking).

        Blocks until stop() is called, the process is interrupted, or the
        output sink fails.

        Raises:
            WatcherAlreadyRunningError: If already running
            WriteError: If the output sink failed
        """
        self.start_async()

        try:
            while not self._stop_event.is_set():
                self._stop_event.wait(timeout=0.5)
        except KeyboardInterrupt:
            pass
        finally:
            self._shutdown()

        if self._error is not None:
            raise self._error

    def start_async(self) -> None:
        """
        Start watching in the background.

        Returns immediately while the process runs in background threads.

        Raises:
            WatcherAlreadyRunningError: If already running
            WatcherError: If no watch roots are configured
            RootNotFoundError: If a root is not a directory
            WriteError: If the output sink cannot be opened
        """
        with self._lock:
            if self._running:
                raise WatcherAlreadyRunningError("Watcher is already running")
            if not self.config.roots:
                raise WatcherError("No watch roots configured")

            self._running = True
            self._stop_event.clear()
            self._error = None

        try:
            self._setup()
        except Exception:
            self._teardown_failed_start()
            raise

        self._threads = [
            threading.Thread(target=self._flush_loop, name="FlushLoop"),
            threading.Thread(target=self._dispatch_loop, name="Dispatcher"),
        ]

        for thread in self._threads:
            thread.daemon = True
            thread.start()

        logger.info(
            f"Watch started on {len(self.config.roots)} root(s), "
            f"debounce={self.config.debounce_ms}ms"
        )

    def _setup(self) -> None:
        if self.debouncer.cancelled:
            self.debouncer = SettleDebouncer(self.config.debounce_ms)
        self._settled = queue.Queue()

        self._fanout = FanOut([self.pipeline.channel_for(self.config.output)])
        self._fanout.start()
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.max_workers,
            thread_name_prefix="fse-watch",
        )
        for root in self.config.roots:
            self._fs_watcher_pool.start_watching(root)

    def _teardown_failed_start(self) -> None:
        self._fs_watcher_pool.stop_all()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        if self._fanout is not None:
            try:
                self._fanout.close()
            except WriteError as e:
                logger.error(f"Closing output failed: {e}")
            self._fanout = None
        with self._lock:
            self._running = False

    def stop(self) -> None:
        """
        Stop the watch process gracefully.

        In-flight parses finish, the output sink is closed, then the
        filesystem observers are stopped.
        """
        self._stop_event.set()
        self._shutdown()

    def _shutdown(self) -> None:
        """Internal shutdown procedure."""
        with self._lock:
            if not self._running:
                return

            self._running = False

        self._stop_event.set()
        self.debouncer.cancel()
        self._settled.put(_STOP)

        for thread in self._threads:
            if thread.is_alive():
                thread.join(timeout=5.0)
        self._threads.clear()

        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

        if self._fanout is not None:
            try:
                self._fanout.close()
            except WriteError as e:
                logger.error(f"Closing output failed: {e}")
                self._error = self._error or e
            self._fanout = None

        stopped = self._fs_watcher_pool.stop_all()
        logger.info(f"Watch stopped ({stopped} observer(s), {len(self._reports)} file(s) parsed)")

    def process_now(self, path: Path) -> bool:
        """
        Queue a file for parsing without waiting for it to settle.

        Returns:
            True if queued, False if the file was already processed or queued

        Raises:
            WatcherNotRunningError: If the process is not running
        """
        if not self._running:
            raise WatcherNotRunningError("Watcher is not running")
        path = Path(path).resolve()
        if not self.debouncer.claim(path):
            logger.debug(f"Already processed: {path}")
            return False
        self._settled.put(path)
        return True

    def _on_raw_event(self, raw_event: RawFSEvent) -> None:
        """Callback from the watchdog handler threads."""
        path = raw_event.target.resolve()
        if self.debouncer.touch(path, raw_event.timestamp):
            logger.debug(f"{raw_event.event_type}: {path}")

    def _flush_loop(self) -> None:
        """Worker loop that moves settled files onto the dispatch queue."""
        flush_interval = self.config.flush_interval_ms / 1000.0
        logger.debug(f"Flush loop started, interval={flush_interval}s")

        while not self._stop_event.is_set():
            for path in self.debouncer.flush(time.time()):
                logger.debug(f"Settled: {path}")
                self._settled.put(path)

            self._stop_event.wait(timeout=flush_interval)

    def _dispatch_loop(self) -> None:
        """Worker loop that submits settled files to the parser pool."""
        while True:
            item = self._settled.get()
            if item is _STOP:
                break
            if self._stop_event.is_set():
                logger.debug(f"Not starting {item}: watch is stopping")
                continue
            future = self._executor.submit(self._parse, item)
            future.add_done_callback(self._parse_done)

    def _parse(self, path: Path) -> None:
        report = FileReport(path)
        try:
            self.pipeline.process_file(path, self._fanout, report=report)
        except WriteError as e:
            logger.error(f"Output failed while parsing {path}: {e}")
            self._error = self._error or e
            self._stop_event.set()
        finally:
            self.debouncer.mark_processed(path)

        with self._lock:
            self._reports.append(report)
        if not report.ok:
            logger.warning(f"{path}: {report.status.value}: {report.error}")
        if self.on_report is not None:
            self.on_report(report)

    def _parse_done(self, future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(f"Parse task failed: {error!r}", exc_info=error)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False
