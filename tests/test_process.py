"""Tests for the watch process."""

import gzip
import json
import logging
import time

import pytest

from src.fsevents.config import OutputSpec, ParseConfig
from src.fsevents.filters import RecordFilter
from src.fsevents.models import FileStatus
from src.watcher.config import WatcherConfig
from src.watcher.exceptions import (
    RootNotFoundError,
    WatcherAlreadyRunningError,
    WatcherError,
    WatcherNotRunningError,
)
from src.watcher.models import SettleState
from src.watcher.process import WatchProcess

from conftest import build_page, v1_entries, write_gzip


def wait_for(predicate, timeout=5.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return predicate()


def make_process(tmp_path, journal_dir, parse_config=None, **config):
    out = tmp_path / "out.jsonl"
    watcher_config = WatcherConfig(
        roots=[journal_dir],
        debounce_ms=config.pop("debounce_ms", 200),
        flush_interval_ms=50,
        output=OutputSpec("json", out, continuous=True),
        **config,
    )
    return WatchProcess(config=watcher_config, parse_config=parse_config), out


def read_lines(path):
    return [json.loads(line) for line in path.read_text().splitlines()]


class TestWatchProcess:
    """Tests for WatchProcess class."""

    def test_create_process(self, tmp_path, journal_dir):
        process, _ = make_process(tmp_path, journal_dir)
        assert process.is_running is False
        assert process.reports == []

    def test_parses_new_journal_once_settled(self, tmp_path, journal_dir):
        process, out = make_process(tmp_path, journal_dir)
        process.start_async()
        try:
            time.sleep(0.2)
            path = write_gzip(journal_dir / "0000000000000100", build_page(b"1SLD", v1_entries("w", 3)))
            assert wait_for(lambda: len(process.reports) == 1)
        finally:
            process.stop()

        assert process.reports[0].path == path.resolve()
        assert process.reports[0].status is FileStatus.OK
        assert [row["path"] for row in read_lines(out)] == ["w/file0", "w/file1", "w/file2"]

    def test_burst_of_writes_parsed_once(self, tmp_path, journal_dir):
        process, out = make_process(tmp_path, journal_dir, debounce_ms=400)
        process.start_async()
        try:
            time.sleep(0.2)
            path = journal_dir / "0000000000000200"
            with open(path, "wb") as f:
                for i in range(3):
                    f.write(gzip.compress(build_page(b"1SLD", v1_entries(f"m{i}", 2))))
                    f.flush()
                    time.sleep(0.1)
            assert wait_for(lambda: len(process.reports) >= 1)
            # further changes to a processed file are ignored
            path.touch()
            time.sleep(0.8)
        finally:
            process.stop()

        assert len(process.reports) == 1
        assert process.reports[0].records_emitted == 6
        assert len(read_lines(out)) == 6

    def test_non_journal_files_ignored(self, tmp_path, journal_dir):
        process, out = make_process(tmp_path, journal_dir)
        process.start_async()
        try:
            time.sleep(0.2)
            (journal_dir / "notes.txt").write_bytes(build_page(b"1SLD", v1_entries("n", 1)))
            time.sleep(0.6)
        finally:
            process.stop()

        assert process.reports == []
        assert out.read_text() == ""

    def test_filter_applied(self, tmp_path, journal_dir):
        entries = [("keep", 1, 0x0100_0000, None, None), ("drop", 2, 0x0200_0000, None, None)]
        parse_config = ParseConfig(record_filter=RecordFilter(any_flags=["Created"]))
        process, out = make_process(tmp_path, journal_dir, parse_config=parse_config)
        process.start_async()
        try:
            time.sleep(0.2)
            write_gzip(journal_dir / "0000000000000300", build_page(b"1SLD", entries))
            assert wait_for(lambda: len(process.reports) == 1)
        finally:
            process.stop()

        assert [row["path"] for row in read_lines(out)] == ["keep"]

    def test_bad_journal_reported(self, tmp_path, journal_dir):
        process, _ = make_process(tmp_path, journal_dir)
        process.start_async()
        try:
            time.sleep(0.2)
            (journal_dir / "0000000000000400").write_bytes(b"ZZZZ" + bytes(8))
            assert wait_for(lambda: len(process.reports) == 1)
        finally:
            process.stop()

        assert process.reports[0].status is FileStatus.FAILED
        assert process.error is None

    def test_process_now(self, tmp_path, journal_dir):
        path = write_gzip(journal_dir / "0000000000000500", build_page(b"1SLD", v1_entries("now", 2)))
        seen = []
        process, out = make_process(tmp_path, journal_dir)
        process.on_report = seen.append
        process.start_async()
        try:
            assert process.process_now(path) is True
            assert wait_for(lambda: len(seen) == 1)
            assert process.process_now(path) is False
        finally:
            process.stop()

        assert seen[0].records_emitted == 2
        assert len(read_lines(out)) == 2

    def test_failing_report_callback_is_logged(self, tmp_path, journal_dir, caplog):
        path = write_gzip(journal_dir / "0000000000000700", build_page(b"1SLD", v1_entries("cb", 1)))

        def explode(report):
            raise RuntimeError("callback broke")

        process, _ = make_process(tmp_path, journal_dir)
        process.on_report = explode
        caplog.set_level(logging.ERROR, logger="src.watcher.process")
        process.start_async()
        try:
            process.process_now(path)
            assert wait_for(lambda: any("callback broke" in r.getMessage() for r in caplog.records))
        finally:
            process.stop()

        assert len(process.reports) == 1
        assert process.is_running is False

    def test_process_now_requires_running(self, tmp_path, journal_dir):
        process, _ = make_process(tmp_path, journal_dir)
        with pytest.raises(WatcherNotRunningError):
            process.process_now(journal_dir / "0001")

    def test_double_start(self, tmp_path, journal_dir):
        process, _ = make_process(tmp_path, journal_dir)
        process.start_async()
        try:
            with pytest.raises(WatcherAlreadyRunningError):
                process.start_async()
        finally:
            process.stop()

    def test_missing_root(self, tmp_path):
        process, _ = make_process(tmp_path, tmp_path / "missing")
        with pytest.raises(RootNotFoundError):
            process.start_async()
        assert process.is_running is False

    def test_no_roots(self, tmp_path):
        process = WatchProcess(WatcherConfig(roots=[], output=OutputSpec("json", tmp_path / "o.jsonl")))
        with pytest.raises(WatcherError):
            process.start_async()

    def test_stop_cancels_pending(self, tmp_path, journal_dir):
        process, out = make_process(tmp_path, journal_dir, debounce_ms=5000)
        process.start_async()
        time.sleep(0.2)
        path = write_gzip(journal_dir / "0000000000000600", build_page(b"1SLD", v1_entries("p", 1)))
        assert wait_for(lambda: process.debouncer.state(path.resolve()) is SettleState.PENDING)
        process.stop()

        assert process.debouncer.state(path.resolve()) is SettleState.CANCELLED
        assert process.reports == []
        assert process.get_watched_roots() == []
        assert out.exists()

    def test_restart_after_stop(self, tmp_path, journal_dir):
        process, _ = make_process(tmp_path, journal_dir)
        process.start_async()
        process.stop()
        process.start_async()
        try:
            assert process.is_running
            assert process.debouncer.cancelled is False
        finally:
            process.stop()

    def test_context_manager(self, tmp_path, journal_dir):
        process, _ = make_process(tmp_path, journal_dir)
        with process:
            process.start_async()
            assert process.is_running
        assert process.is_running is False
