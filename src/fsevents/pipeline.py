"""
Batch pipeline: decode, filter and fan records out to every sink.

Combined outputs are fed through SinkChannels. Each channel is a bounded
queue drained by a single thread that owns one RecordWriter, so writes to
a destination are serialised in arrival order no matter how many workers
produce records. Per-file writers belong to the worker handling that file.
Unique-path counts are accumulated per file and merged on the
coordinating thread.
"""

import logging
import queue
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Callable, Iterable, List, Mapping, Optional, Tuple

from .config import ParseConfig
from .decoder import iter_records, open_journal
from .exceptions import DecodeError, FileAccessError, TruncatedRecordError, WriteError
from .models import FileReport, FileStatus, RunReport
from .uniques import UniqueAggregator
from .writers import RecordWriter, record_fieldnames, unique_fieldnames

logger = logging.getLogger(__name__)

BATCH_SIZE = 256

_STOP = object()

Row = Mapping[str, object]


class SinkChannel:
    """
    Bounded queue plus the one thread allowed to write to its destination.

    After a write failure the thread keeps draining the queue so producers
    never block, and the error is re-raised to producers on their next put.
    """

    def __init__(
        self,
        writer: RecordWriter,
        maxsize: int = 64,
        on_error: Optional[Callable[[WriteError], None]] = None,
    ):
        self.writer = writer
        self.on_error = on_error
        self._queue: "queue.Queue" = queue.Queue(maxsize=maxsize)
        self._thread = threading.Thread(
            target=self._consume,
            name=f"Sink-{writer.destination}",
            daemon=True,
        )
        self._error: Optional[WriteError] = None
        self._started = False
        self._closed = False

    @property
    def error(self) -> Optional[WriteError]:
        return self._error

    def start(self) -> None:
        """Open the destination on the calling thread, then start draining."""
        if self._started:
            return
        self.writer.open()
        self._started = True
        self._thread.start()

    def put(self, rows: List[Row]) -> None:
        if self._error is not None:
            raise self._error
        if not self._started:
            self.start()
        self._queue.put(rows)

    def _consume(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                break
            if self._error is not None:
                continue
            try:
                for row in item:
                    self.writer.write(row)
            except WriteError as e:
                logger.error(f"Output {self.writer.destination} failed: {e}")
                self._fail(e)

        if self._error is not None:
            self.writer.abort()
            return
        try:
            self.writer.close()
        except WriteError as e:
            self._fail(e)

    def _fail(self, error: WriteError) -> None:
        self._error = error
        if self.on_error is not None:
            self.on_error(error)

    def close(self) -> None:
        """Wait for queued rows to be written and close the destination."""
        if self._closed:
            return
        self._closed = True
        if not self._started:
            return
        self._queue.put(_STOP)
        self._thread.join()
        if self._error is not None:
            raise self._error


class FanOut:
    """Delivers every published batch to each channel, in publish order."""

    def __init__(self, channels: Iterable[SinkChannel] = ()):
        self.channels: List[SinkChannel] = list(channels)
        self.failed = threading.Event()
        for channel in self.channels:
            channel.on_error = self._on_error

    def _on_error(self, error: WriteError) -> None:
        self.failed.set()

    @property
    def error(self) -> Optional[WriteError]:
        for channel in self.channels:
            if channel.error is not None:
                return channel.error
        return None

    def start(self) -> None:
        started = []
        try:
            for channel in self.channels:
                channel.start()
                started.append(channel)
        except WriteError:
            for channel in started:
                try:
                    channel.close()
                except WriteError:
                    pass
            raise

    def check(self) -> None:
        """Raise the first sink failure, if any."""
        if self.failed.is_set():
            raise self.error

    def publish(self, rows: List[Row]) -> None:
        if not rows:
            return
        self.check()
        for channel in self.channels:
            channel.put(rows)

    def close(self) -> None:
        """Close every channel, then raise the first failure."""
        first: Optional[WriteError] = None
        for channel in self.channels:
            try:
                channel.close()
            except WriteError as e:
                first = first or e
        if first is not None:
            raise first

    def __len__(self) -> int:
        return len(self.channels)


class Pipeline:
    """
    Runs decode -> filter -> sinks over a list of journal files.

    Sequential mode keeps combined output in exact file order. Parallel
    mode keeps each file's records in storage order but interleaves files.
    """

    def __init__(self, config: Optional[ParseConfig] = None, stop_event: Optional[threading.Event] = None):
        """
        Initialize the pipeline.

        Args:
            config: Run configuration (filter, formatting, sinks, parallelism)
            stop_event: Checked between files and between pages
        """
        self.config = config or ParseConfig()
        self._stop_event = stop_event or threading.Event()
        self._abort = threading.Event()

    @property
    def stop_event(self) -> threading.Event:
        return self._stop_event

    def stop(self) -> None:
        """Request cancellation at the next file or page boundary."""
        self._stop_event.set()

    def channel_for(self, spec) -> SinkChannel:
        """Build a sink channel for one combined output spec."""
        writer = RecordWriter(spec, record_fieldnames(self.config.record_format))
        return SinkChannel(writer, maxsize=self.config.queue_size)

    def process_file(
        self,
        path: Path,
        fanout: Optional[FanOut] = None,
        aggregator: Optional[UniqueAggregator] = None,
        report: Optional[FileReport] = None,
    ) -> FileReport:
        """
        Decode one file and hand its filtered records to every sink.

        Decode and access errors are recorded in the returned report; records
        emitted before the error stay emitted. A report passed in is filled in
        place, so it stays accurate when a sink failure is raised.

        Raises:
            WriteError: If any sink fails; the report is marked FAILED first
        """
        path = Path(path)
        if report is None:
            report = FileReport(path)
        fmt = self.config.record_format
        record_filter = self.config.record_filter
        per_file: List[RecordWriter] = []
        batch: List[Row] = []
        stopped_at: List[int] = []

        logger.info(f"Parsing {path}")
        try:
            try:
                with open_journal(path) as stream:
                    for spec in self.config.per_file:
                        writer = RecordWriter(spec.for_input(path), record_fieldnames(fmt))
                        per_file.append(writer)
                        writer.open()

                    for record in iter_records(stream, path, self._stop_event, stopped_at.append):
                        report.records_decoded += 1
                        if not record_filter.passes(record):
                            continue
                        report.records_emitted += 1
                        if aggregator is not None:
                            aggregator.add(record)
                        if not per_file and fanout is None:
                            continue

                        row = record.to_row(fmt)
                        for writer in per_file:
                            writer.write(row)
                        if fanout is not None:
                            batch.append(row)
                            if len(batch) >= BATCH_SIZE:
                                fanout.publish(batch)
                                batch = []

                if stopped_at:
                    report.status = FileStatus.PARTIAL
                    report.error_kind = "Cancelled"
                    report.error = f"stopped at page offset {stopped_at[0]}"
            except (FileAccessError, DecodeError) as e:
                report.status = FileStatus.PARTIAL if isinstance(e, TruncatedRecordError) else FileStatus.FAILED
                report.error_kind = type(e).__name__
                report.error = str(e)
                logger.warning(f"{path}: {report.error_kind}: {e}")

            if fanout is not None:
                fanout.publish(batch)
            for writer in per_file:
                writer.close()
        except WriteError as e:
            for writer in per_file:
                writer.abort()
            report.status = FileStatus.FAILED
            report.error_kind = type(e).__name__
            report.error = str(e)
            raise

        logger.debug(
            f"Finished {path}: {report.records_emitted}/{report.records_decoded} records emitted"
        )
        return report

    def _process_or_skip(
        self,
        path: Path,
        fanout: FanOut,
        want_uniques: bool,
    ) -> Tuple[FileReport, Optional[UniqueAggregator], Optional[WriteError]]:
        if self._abort.is_set():
            return _skipped(path, "run aborted"), None, None
        if self._stop_event.is_set():
            return _skipped(path), None, None
        partial = UniqueAggregator() if want_uniques else None
        report = FileReport(path)
        try:
            self.process_file(path, fanout, partial, report)
        except WriteError as e:
            return report, None, e
        return report, partial, None

    def run(self, files: Iterable[Path]) -> RunReport:
        """
        Process every file and finalise all sinks.

        Returns:
            RunReport with one entry per input, in input order

        Raises:
            WriteError: If any sink fails; every sink is closed first and the
                partial report is attached as ``error.report``
        """
        files = [Path(f) for f in files]
        report = RunReport(files=[_skipped(p, "not started") for p in files])
        totals = UniqueAggregator() if self.config.uniques else None
        fanout = FanOut(self.channel_for(spec) for spec in self.config.combined)
        self._abort.clear()

        parallel = self.config.parallel and self.config.workers > 1 and len(files) > 1
        logger.info(
            f"Processing {len(files)} file(s) "
            f"{'in parallel with ' + str(self.config.workers) + ' workers' if parallel else 'sequentially'}"
        )

        error: Optional[WriteError] = None
        try:
            fanout.start()
            if parallel:
                self._run_parallel(files, fanout, totals, report)
            else:
                self._run_sequential(files, fanout, totals, report)
        except WriteError as e:
            error = e

        try:
            fanout.close()
        except WriteError as e:
            error = error or e

        if totals is not None:
            report.unique_paths = len(totals)
            if error is None:
                try:
                    self._write_uniques(totals)
                except WriteError as e:
                    error = e

        if error is not None:
            logger.error(f"Run aborted: {error}")
            error.report = report
            raise error

        logger.info(
            f"Done: {len(report.succeeded)} ok, {len(report.failed)} with errors, "
            f"{report.records_emitted} records emitted"
        )
        return report

    def _run_sequential(
        self,
        files: List[Path],
        fanout: FanOut,
        totals: Optional[UniqueAggregator],
        report: RunReport,
    ) -> None:
        for index, path in enumerate(files):
            fanout.check()
            file_report, partial, error = self._process_or_skip(path, fanout, totals is not None)
            report.files[index] = file_report
            if error is not None:
                raise error
            if partial is not None:
                totals.merge(partial)

    def _run_parallel(
        self,
        files: List[Path],
        fanout: FanOut,
        totals: Optional[UniqueAggregator],
        report: RunReport,
    ) -> None:
        first_error: Optional[WriteError] = None

        with ThreadPoolExecutor(
            max_workers=self.config.workers,
            thread_name_prefix="fse-worker",
        ) as pool:
            futures = {
                pool.submit(self._process_or_skip, path, fanout, totals is not None): index
                for index, path in enumerate(files)
            }
            for future in as_completed(futures):
                file_report, partial, error = future.result()
                report.files[futures[future]] = file_report
                if error is not None:
                    self._abort.set()
                    first_error = first_error or error
                    continue
                if partial is not None:
                    totals.merge(partial)

        if first_error is not None:
            raise first_error

    def _write_uniques(self, totals: UniqueAggregator) -> None:
        fmt = self.config.record_format
        rows = [entry.to_row(fmt) for entry in totals.entries()]
        for spec in self.config.uniques:
            with RecordWriter(spec, unique_fieldnames(fmt)) as writer:
                writer.write_all(rows)
            logger.info(f"Wrote {len(rows)} unique path(s) to {spec.destination}")


def _skipped(path: Path, reason: str = "run cancelled") -> FileReport:
    return FileReport(
        path,
        status=FileStatus.SKIPPED,
        error_kind="Skipped",
        error=reason,
    )
