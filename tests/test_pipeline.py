"""Tests for the batch pipeline."""

import csv
import json
import os
import threading
from collections import Counter
from pathlib import Path

import pytest

from src.fsevents.config import OutputSpec, ParseConfig, RecordFormat
from src.fsevents.exceptions import WriteError
from src.fsevents.filters import RecordFilter
from src.fsevents.models import FileStatus
from src.fsevents.pipeline import FanOut, Pipeline, SinkChannel
from src.fsevents.writers import RecordWriter, record_fieldnames

from conftest import build_page, v1_entries, write_gzip


def read_csv(path):
    with open(path, newline="") as f:
        return list(csv.DictReader(f))


def many_journals(directory, count=6, per_file=40):
    paths = []
    for i in range(count):
        pages = [build_page(b"1SLD", v1_entries(f"f{i}/p{j}", per_file // 2, i * 1000 + j * 100)) for j in range(2)]
        paths.append(write_gzip(directory / f"{i + 1:016x}", *pages))
    return paths


class TestSequential:
    """Tests for sequential runs."""

    def test_combined_order_is_file_order(self, tmp_path, two_journals):
        a, b = two_journals
        out = tmp_path / "out.csv"
        config = ParseConfig(combined=[OutputSpec("csv", out)])
        report = Pipeline(config).run([a, b])

        rows = read_csv(out)
        assert [r["path"] for r in rows] == [
            "a/file0", "a/file1", "a/file2", "b/file0", "b/file1",
        ]
        assert report.exit_code == 0
        assert report.records_emitted == 5

    def test_reverse_input_order(self, tmp_path, two_journals):
        a, b = two_journals
        out = tmp_path / "out.json"
        Pipeline(ParseConfig(combined=[OutputSpec("json", out)])).run([b, a])
        assert [r["path"][0] for r in json.loads(out.read_text())] == ["b", "b", "a", "a", "a"]

    def test_v2_record_to_json(self, tmp_path, v2_journal):
        out = tmp_path / "out.json"
        config = ParseConfig(combined=[OutputSpec("json", out)], record_format=RecordFormat(hex_ids=True))
        Pipeline(config).run([v2_journal])
        [row] = json.loads(out.read_text())
        assert row == {
            "path": "tmp/a",
            "event_id": "0x10",
            "flags": "FileEvent | Modified",
            "node_id": "0x2A",
            "extra_id": None,
        }

    def test_filter_applies_to_every_sink(self, tmp_path, journal_dir):
        entries = [("keep/x", 1, 0x0100_0000, None, None), ("drop/y", 2, 0x1000_0000, None, None)]
        path = write_gzip(journal_dir / "0001", build_page(b"1SLD", entries))
        out = tmp_path / "out.csv"
        uniques = tmp_path / "uniques.csv"
        config = ParseConfig(
            record_filter=RecordFilter(any_flags=["Created"]),
            combined=[OutputSpec("csv", out)],
            uniques=[OutputSpec("csv", uniques)],
        )
        report = Pipeline(config).run([path])

        assert [r["path"] for r in read_csv(out)] == ["keep/x"]
        assert [r["path"] for r in read_csv(uniques)] == ["keep/x"]
        assert report.files[0].records_decoded == 2
        assert report.files[0].records_emitted == 1

    def test_uniques(self, tmp_path, journal_dir):
        entries = [
            ("x", 1, 0x0100_0000, None, None),
            ("y", 2, 0x0000_8000, None, None),
            ("x", 3, 0x1000_0000, None, None),
        ]
        path = write_gzip(journal_dir / "0001", build_page(b"1SLD", entries))
        uniques = tmp_path / "uniques.csv"
        report = Pipeline(ParseConfig(uniques=[OutputSpec("csv", uniques)])).run([path])

        rows = read_csv(uniques)
        assert rows == [
            {"path": "x", "counts": "2", "flags": "Created | Modified"},
            {"path": "y", "counts": "1", "flags": "FileEvent"},
        ]
        assert report.unique_paths == 2

    def test_per_file_outputs(self, two_journals):
        a, b = two_journals
        config = ParseConfig(per_file=[OutputSpec("csv"), OutputSpec("json", compression="gzip")])
        Pipeline(config).run([a, b])

        assert len(read_csv(Path(f"{a}.csv"))) == 3
        assert len(read_csv(Path(f"{b}.csv"))) == 2
        assert Path(f"{a}.json.gz").exists()

    def test_several_combined_outputs(self, tmp_path, two_journals):
        csv_out, json_out, yaml_out = tmp_path / "o.csv", tmp_path / "o.json", tmp_path / "o.yaml"
        config = ParseConfig(combined=[
            OutputSpec("csv", csv_out), OutputSpec("json", json_out), OutputSpec("yaml", yaml_out),
        ])
        Pipeline(config).run(list(two_journals))
        assert len(read_csv(csv_out)) == 5
        assert len(json.loads(json_out.read_text())) == 5
        assert yaml_out.read_text().count("- path:") == 5

    def test_no_outputs_counts_records(self, two_journals):
        report = Pipeline().run(list(two_journals))
        assert report.records_emitted == 5


class TestFailures:
    """Tests for per-file failure handling."""

    def test_failed_file_does_not_stop_run(self, tmp_path, two_journals, journal_dir):
        a, b = two_journals
        bad = journal_dir / "000000000000000c"
        bad.write_bytes(b"\x1f\x8b" + b"not really gzip")
        out = tmp_path / "out.csv"
        report = Pipeline(ParseConfig(combined=[OutputSpec("csv", out)])).run([a, bad, b])

        assert [f.status for f in report.files] == [FileStatus.OK, FileStatus.FAILED, FileStatus.OK]
        assert report.files[1].error_kind == "CorruptArchiveError"
        assert len(read_csv(out)) == 5
        assert report.exit_code == 1

    def test_missing_file(self, tmp_path, two_journals):
        a, _ = two_journals
        report = Pipeline().run([tmp_path / "gone", a])
        assert report.files[0].status is FileStatus.FAILED
        assert report.files[0].error_kind == "FileAccessError"
        assert report.files[1].ok

    def test_truncated_file_keeps_records(self, tmp_path, journal_dir):
        page = build_page(b"1SLD", v1_entries("t", 3))
        path = write_gzip(journal_dir / "0001", page[:-4])
        out = tmp_path / "out.csv"
        report = Pipeline(ParseConfig(combined=[OutputSpec("csv", out)])).run([path])

        assert report.files[0].status is FileStatus.PARTIAL
        assert report.files[0].error_kind == "TruncatedRecordError"
        assert len(read_csv(out)) == 2

    def test_unknown_version_after_good_page(self, tmp_path, journal_dir):
        data = build_page(b"1SLD", v1_entries("ok", 2)) + b"7SLD" + bytes(8)
        path = write_gzip(journal_dir / "0001", data)
        report = Pipeline().run([path])
        assert report.files[0].status is FileStatus.FAILED
        assert report.files[0].error_kind == "UnknownPageVersionError"
        assert report.files[0].records_emitted == 2

    def test_unwritable_output_raises(self, tmp_path, two_journals):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        config = ParseConfig(combined=[OutputSpec("csv", blocker / "out.csv")])
        with pytest.raises(WriteError) as exc:
            Pipeline(config).run(list(two_journals))
        assert exc.value.report is not None
        assert len(exc.value.report.files) == 2

    def test_stop_before_run_skips_files(self, two_journals):
        stop = threading.Event()
        stop.set()
        report = Pipeline(stop_event=stop).run(list(two_journals))
        assert [f.status for f in report.files] == [FileStatus.SKIPPED, FileStatus.SKIPPED]


class TestParallel:
    """Tests for parallel runs."""

    def test_same_records_as_sequential(self, tmp_path, journal_dir):
        files = many_journals(journal_dir)
        seq_out, par_out = tmp_path / "seq.csv", tmp_path / "par.csv"

        Pipeline(ParseConfig(combined=[OutputSpec("csv", seq_out)])).run(files)
        report = Pipeline(ParseConfig(
            combined=[OutputSpec("csv", par_out)], parallel=True, workers=4,
        )).run(files)

        def multiset(path):
            return Counter(tuple(r.values()) for r in read_csv(path))

        assert multiset(seq_out) == multiset(par_out)
        assert report.records_emitted == 6 * 40
        assert [f.path for f in report.files] == files

    def test_per_file_order_kept(self, tmp_path, journal_dir):
        files = many_journals(journal_dir)
        out = tmp_path / "par.csv"
        Pipeline(ParseConfig(combined=[OutputSpec("csv", out)], parallel=True, workers=3)).run(files)

        by_file = {}
        for row in read_csv(out):
            by_file.setdefault(row["path"].split("/")[0], []).append(int(row["event_id"]))
        for ids in by_file.values():
            assert ids == sorted(ids)

    def test_uniques_merge(self, tmp_path, journal_dir):
        shared = [("shared", 1, 0x0100_0000, None, None)]
        files = [
            write_gzip(journal_dir / "0001", build_page(b"1SLD", shared)),
            write_gzip(journal_dir / "0002", build_page(b"1SLD", [("shared", 2, 0x0200_0000, None, None)])),
            write_gzip(journal_dir / "0003", build_page(b"1SLD", shared)),
        ]
        uniques = tmp_path / "u.json"
        Pipeline(ParseConfig(uniques=[OutputSpec("json", uniques)], parallel=True, workers=3)).run(files)
        assert json.loads(uniques.read_text()) == [
            {"path": "shared", "counts": 3, "flags": "Created | Removed"},
        ]

    def test_failure_isolated(self, tmp_path, journal_dir):
        files = many_journals(journal_dir, count=4)
        bad = journal_dir / "00000000000000ff"
        bad.write_bytes(b"XXXX" + bytes(8))
        report = Pipeline(ParseConfig(parallel=True, workers=2)).run(files + [bad])
        assert report.files[-1].status is FileStatus.FAILED
        assert len(report.succeeded) == 4


class TestFanOut:
    """Tests for sink channels."""

    def test_rows_delivered_in_publish_order(self, tmp_path):
        out = tmp_path / "out.csv"
        channel = SinkChannel(RecordWriter(OutputSpec("csv", out), ["path"]), maxsize=2)
        fanout = FanOut([channel])
        fanout.start()
        for i in range(20):
            fanout.publish([{"path": f"p{i}"}])
        fanout.close()
        assert [r["path"] for r in read_csv(out)] == [f"p{i}" for i in range(20)]

    def test_empty_batch_ignored(self, tmp_path):
        out = tmp_path / "out.json"
        fanout = FanOut([SinkChannel(RecordWriter(OutputSpec("json", out), record_fieldnames()))])
        fanout.start()
        fanout.publish([])
        fanout.close()
        assert json.loads(out.read_text()) == []
        assert len(fanout) == 1


needs_dev_full = pytest.mark.skipif(not os.path.exists("/dev/full"), reason="needs /dev/full")


def large_journals(directory, count=3, per_file=2000):
    return [
        write_gzip(directory / f"{i + 1:016x}", build_page(b"1SLD", v1_entries(f"big{i}", per_file, i * 10_000)))
        for i in range(count)
    ]


@needs_dev_full
class TestSinkFailure:
    """Tests for a combined sink that fails part way through a run."""

    def run_failing(self, tmp_path, files, **options):
        good = tmp_path / "good.json"
        uniques = tmp_path / "uniques.csv"
        config = ParseConfig(
            combined=[OutputSpec("csv", "/dev/full"), OutputSpec("json", good)],
            uniques=[OutputSpec("csv", uniques)],
            queue_size=1,
            **options,
        )
        with pytest.raises(WriteError) as exc:
            Pipeline(config).run(files)
        return exc.value, good, uniques

    def assert_reports_accurate(self, report, files, per_file=2000):
        assert [f.path for f in report.files] == files
        for file_report in report.files:
            if file_report.status is FileStatus.OK:
                assert file_report.records_emitted == per_file
            elif file_report.status is FileStatus.FAILED:
                assert file_report.error_kind == "WriteError"
                assert file_report.error
            else:
                assert file_report.status is FileStatus.SKIPPED
                assert file_report.records_emitted == 0
        assert any(f.status is FileStatus.FAILED for f in report.files)

    def test_sequential(self, tmp_path, journal_dir):
        files = large_journals(journal_dir)
        error, good, uniques = self.run_failing(tmp_path, files)

        report = error.report
        self.assert_reports_accurate(report, files)
        failed = [f for f in report.files if f.status is FileStatus.FAILED]
        assert len(failed) == 1
        assert failed[0].records_emitted > 0
        # nothing after the failed file is started
        index = report.files.index(failed[0])
        assert all(f.status is FileStatus.SKIPPED for f in report.files[index + 1:])
        assert report.files[-1].status is FileStatus.SKIPPED
        assert report.exit_code != 0

        # the other sink is still closed as a complete document
        assert isinstance(json.loads(good.read_text()), list)
        assert not uniques.exists()

    def test_parallel(self, tmp_path, journal_dir):
        files = large_journals(journal_dir, count=4)
        error, good, uniques = self.run_failing(tmp_path, files, parallel=True, workers=2)

        self.assert_reports_accurate(error.report, files)
        assert isinstance(json.loads(good.read_text()), list)
        assert not uniques.exists()

    def test_per_file_outputs_closed(self, tmp_path, journal_dir):
        files = large_journals(journal_dir, count=2)
        self.run_failing(tmp_path, files, per_file=[OutputSpec("json")])

        for path in files:
            per_file = Path(f"{path}.json")
            if per_file.exists():
                assert isinstance(json.loads(per_file.read_text()), list)


class StopOnRecord(RecordFilter):
    """Accepts everything and raises the stop event on the first record."""

    def __init__(self, stop):
        super().__init__()
        self.stop = stop

    def passes(self, record):
        self.stop.set()
        return True


class TestCancellation:
    """Tests for stops that arrive while a file is being decoded."""

    def test_stop_after_last_page_keeps_file_ok(self, journal_dir):
        stop = threading.Event()
        path = write_gzip(journal_dir / "0001", build_page(b"1SLD", v1_entries("one", 3)))
        report = Pipeline(ParseConfig(record_filter=StopOnRecord(stop)), stop_event=stop).process_file(path)

        assert report.status is FileStatus.OK
        assert report.records_emitted == 3

    def test_stop_with_pages_left_is_partial(self, journal_dir):
        stop = threading.Event()
        data = build_page(b"1SLD", v1_entries("a", 2)) + build_page(b"1SLD", v1_entries("b", 2))
        path = write_gzip(journal_dir / "0001", data)
        report = Pipeline(ParseConfig(record_filter=StopOnRecord(stop)), stop_event=stop).process_file(path)

        assert report.status is FileStatus.PARTIAL
        assert report.error_kind == "Cancelled"
        assert report.records_emitted == 2
