#!/usr/bin/env python3
"""
CLI for dumping and watching FSEvents journals.

Usage:
    python -m src.cli dump /.fseventsd -c records.csv -u uniques.csv
    python -m src.cli dump 0000000001df1b9b --json - --any-flags Created Removed
    python -m src.cli watch --pretty
    python -m src.cli flags
"""

import argparse
import logging
import signal
import sys
import time
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from src.fsevents import (
    ConfigError,
    OutputFormat,
    OutputSpec,
    ParseConfig,
    Pipeline,
    RecordFilter,
    RecordFormat,
    WriteError,
    discover_files,
)
from src.fsevents.config import STDOUT, default_workers
from src.fsevents.flags import ALT_FLAGS, FLAGS
from src.watcher import WatcherConfig, WatcherError, WatchProcess
from src.watcher.config import default_debounce_ms, default_roots

logger = logging.getLogger("cli")

EXIT_OK = 0
EXIT_FILE_ERRORS = 1
EXIT_CONFIG = 2
EXIT_WRITE = 3

_FORMAT_SUFFIXES = {
    ".csv": OutputFormat.CSV,
    ".json": OutputFormat.JSON,
    ".jsonl": OutputFormat.JSON,
    ".yaml": OutputFormat.YAML,
    ".yml": OutputFormat.YAML,
}


class GracefulShutdown:
    """Handle graceful shutdown on SIGINT/SIGTERM."""

    def __init__(self, on_exit=None):
        self.should_exit = False
        self.on_exit = on_exit
        signal.signal(signal.SIGINT, self._handler)
        signal.signal(signal.SIGTERM, self._handler)

    def _handler(self, signum, frame):
        logger.info("Received shutdown signal, stopping...")
        self.should_exit = True
        if self.on_exit is not None:
            self.on_exit()


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    elif quiet:
        logging.getLogger().setLevel(logging.WARNING)


def infer_format(destination: str, default: OutputFormat = OutputFormat.CSV) -> OutputFormat:
    """Pick the output format from a destination's extension, ignoring .gz/.zst."""
    if destination == STDOUT:
        return default
    path = Path(destination)
    suffixes = [s.lower() for s in path.suffixes]
    while suffixes and suffixes[-1] in (".gz", ".gzip", ".zst", ".zstd"):
        suffixes.pop()
    if suffixes and suffixes[-1] in _FORMAT_SUFFIXES:
        return _FORMAT_SUFFIXES[suffixes[-1]]
    return default


def _codec_options(args) -> dict:
    return {
        "gzip_level": args.gzip_level,
        "zstd_level": args.zstd_level,
        "zstd_threads": args.zstd_threads,
    }


def _record_filter(args) -> RecordFilter:
    return RecordFilter(
        path_pattern=args.filter,
        any_flags=args.any_flags or (),
        all_flags=args.all_flags or (),
    )


def _record_format(args) -> RecordFormat:
    return RecordFormat(
        hex_ids=args.hex,
        alt_flags=args.alt_flags,
        extra_id=not args.no_extra_id,
    )


def build_parse_config(args) -> ParseConfig:
    """
    Translate dump arguments into a ParseConfig.

    Raises:
        ConfigError: If the options are inconsistent
    """
    codec = _codec_options(args)
    compression = args.compress

    def compression_for(dest):
        return None if dest == STDOUT else compression

    combined: List[OutputSpec] = []
    for fmt, dest in (
        (OutputFormat.CSV, args.csv),
        (OutputFormat.JSON, args.json),
        (OutputFormat.YAML, args.yaml),
    ):
        if dest:
            combined.append(OutputSpec(fmt, dest, compression=compression_for(dest), pretty=args.pretty, **codec))

    uniques: List[OutputSpec] = []
    if args.uniques:
        uniques.append(OutputSpec(
            infer_format(args.uniques), args.uniques,
            compression=compression_for(args.uniques), pretty=args.pretty, **codec,
        ))

    per_file: List[OutputSpec] = []
    for fmt, enabled in (
        (OutputFormat.CSV, args.csvs),
        (OutputFormat.JSON, args.jsons),
        (OutputFormat.YAML, args.yamls),
    ):
        if enabled:
            per_file.append(OutputSpec(fmt, None, compression=compression, pretty=args.pretty, **codec))

    return ParseConfig(
        record_filter=_record_filter(args),
        days=args.days,
        parallel=args.parallel,
        workers=args.workers,
        record_format=_record_format(args),
        combined=combined,
        uniques=uniques,
        per_file=per_file,
    )


def cmd_dump(args) -> int:
    """Parse journal files once and write every requested output."""
    try:
        config = build_parse_config(args)
    except ConfigError as e:
        logger.error(f"Invalid options: {e}")
        return EXIT_CONFIG

    if not config.has_outputs:
        logger.warning("No outputs requested; records will only be counted")

    files = discover_files([Path(p) for p in args.files], days=config.days)
    if not files:
        logger.warning("No journal files found")
        return EXIT_OK

    pipeline = Pipeline(config)
    GracefulShutdown(on_exit=pipeline.stop)

    started = time.time()
    try:
        report = pipeline.run(files)
    except WriteError as e:
        logger.error(f"Writing output failed: {e}")
        return EXIT_WRITE

    for file_report in report.failed:
        logger.warning(
            f"{file_report.path}: {file_report.status.value} "
            f"({file_report.error_kind}: {file_report.error})"
        )
    logger.info(
        f"Parsed {len(report.files)} file(s), {report.records_emitted} record(s) emitted "
        f"in {time.time() - started:.2f}s"
    )
    if config.uniques:
        logger.info(f"{report.unique_paths} unique path(s)")
    return report.exit_code


def build_watch_config(args) -> WatcherConfig:
    roots = [Path(r) for r in args.roots] if args.roots else default_roots()
    fmt = OutputFormat(args.format)
    compression = None if args.output == STDOUT else args.compress
    output = OutputSpec(
        fmt,
        args.output,
        compression=compression,
        continuous=True,
        pretty=args.pretty,
        **_codec_options(args),
    )
    return WatcherConfig(
        roots=roots,
        debounce_ms=args.debounce,
        polling=args.polling,
        recursive=args.recursive,
        output=output,
        max_workers=args.workers,
    )


def cmd_watch(args) -> int:
    """Parse each new journal file as soon as it settles."""
    try:
        config = build_watch_config(args)
        parse_config = ParseConfig(
            record_filter=_record_filter(args),
            workers=args.workers,
            record_format=_record_format(args),
        )
    except (ConfigError, ValueError) as e:
        logger.error(f"Invalid options: {e}")
        return EXIT_CONFIG

    if not config.roots:
        logger.error("No journal directory found; pass one or more roots")
        return EXIT_CONFIG

    process = WatchProcess(config=config, parse_config=parse_config)
    shutdown = GracefulShutdown(on_exit=process.stop)

    try:
        process.start_async()
    except WatcherError as e:
        logger.error(f"Cannot start watching: {e}")
        return EXIT_CONFIG
    except WriteError as e:
        logger.error(f"Cannot open output: {e}")
        return EXIT_WRITE

    logger.info(f"Watching {len(config.roots)} root(s)")
    for root in config.roots:
        logger.info(f"  - {root}")
    logger.info("Press Ctrl+C to stop")

    with process:
        while not shutdown.should_exit and process.is_running and process.error is None:
            time.sleep(0.5)

    if process.error is not None:
        logger.error(f"Writing output failed: {process.error}")
        return EXIT_WRITE
    failed = [r for r in process.reports if not r.ok]
    logger.info(f"Watch finished: {len(process.reports)} file(s) parsed, {len(failed)} with errors")
    return EXIT_FILE_ERRORS if failed else EXIT_OK


def cmd_flags(args) -> int:
    """Print the flag name table."""
    table = ALT_FLAGS if args.alt else FLAGS
    for name, value in table:
        print(f"0x{value:08X}  {name}")
    return EXIT_OK


def _add_format_options(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group("filtering and formatting")
    group.add_argument("--filter", metavar="REGEX", help="Only keep records whose path matches REGEX")
    flags = group.add_mutually_exclusive_group()
    flags.add_argument("--any-flags", nargs="+", metavar="NAME", help="Keep records with any of these flags")
    flags.add_argument("--all-flags", nargs="+", metavar="NAME", help="Keep records with all of these flags")
    group.add_argument("--hex", action="store_true", help="Render ids as hex")
    group.add_argument("--alt-flags", action="store_true", help="Add a column with the alternate flag names")
    group.add_argument("--no-extra-id", action="store_true", help="Omit the extra_id column")
    group.add_argument("--pretty", action="store_true", help="Indent JSON output")

    codec = parser.add_argument_group("compression")
    codec.add_argument("--compress", choices=["none", "gzip", "zstd"], default=None,
                       help="Codec for every file destination (default: from the extension, none for --csvs/--jsons/--yamls)")
    codec.add_argument("--gzip-level", type=int, default=7, help="gzip level 0-9 (default: 7)")
    codec.add_argument("--zstd-level", type=int, default=3, help="zstd level 0-20 (default: 3)")
    codec.add_argument("--zstd-threads", type=int, default=2, help="zstd worker threads (default: 2)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fse-dump",
        description="Dump macOS FSEvents journal files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Combined CSV plus per-path summary of everything in the journal directory
  fse-dump dump /System/Volumes/Data/.fseventsd -c records.csv -u uniques.csv

  # Zstd-compressed JSON, only records touching files under /Users
  fse-dump dump /.fseventsd -j records.json.zst --filter '^Users/'

  # A CSV next to each journal file, four workers
  fse-dump dump /.fseventsd --csvs --parallel --workers 4

  # Stream new records as JSON lines
  fse-dump watch
        """,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("-q", "--quiet", action="store_true", help="Only log warnings and errors")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # Dump command
    dump_parser = subparsers.add_parser("dump", help="Parse journal files and write records")
    dump_parser.add_argument("files", nargs="+",
                             help="Journal files, or directories searched for hex-named files")
    dump_parser.add_argument("-c", "--csv", metavar="DEST", help="Combined CSV output ('-' for stdout)")
    dump_parser.add_argument("-j", "--json", metavar="DEST", help="Combined JSON output ('-' for stdout)")
    dump_parser.add_argument("-y", "--yaml", metavar="DEST", help="Combined YAML output ('-' for stdout)")
    dump_parser.add_argument("-u", "--uniques", metavar="DEST",
                             help="Per-path summary; format from extension (default: csv)")
    dump_parser.add_argument("--csvs", action="store_true", help="Write a CSV next to every input")
    dump_parser.add_argument("--jsons", action="store_true", help="Write a JSON next to every input")
    dump_parser.add_argument("--yamls", action="store_true", help="Write a YAML next to every input")
    dump_parser.add_argument("-p", "--parallel", action="store_true",
                             help="Parse files in parallel (combined output order is not kept)")
    dump_parser.add_argument("--workers", type=int, default=default_workers(),
                             help="Worker threads for --parallel (default: FSE_DUMP_WORKERS or CPU count)")
    dump_parser.add_argument("--days", type=int, default=None,
                             help="Only parse files modified within this many days")
    _add_format_options(dump_parser)
    dump_parser.set_defaults(func=cmd_dump)

    # Watch command
    watch_parser = subparsers.add_parser("watch", help="Parse new journal files as they appear")
    watch_parser.add_argument("roots", nargs="*",
                              help="Directories to watch (default: the system journal directory)")
    watch_parser.add_argument("-f", "--format", choices=[f.value for f in OutputFormat], default="json",
                              help="Output format (default: json)")
    watch_parser.add_argument("-o", "--output", default=STDOUT, help="Output destination (default: stdout)")
    watch_parser.add_argument("--debounce", type=int, default=default_debounce_ms(),
                              help="Settle time in ms (default: FSE_DUMP_DEBOUNCE_MS or 1000)")
    watch_parser.add_argument("--polling", action="store_true", help="Use polling instead of native events")
    watch_parser.add_argument("--recursive", action="store_true", help="Watch subdirectories too")
    watch_parser.add_argument("--workers", type=int, default=2, help="Parser threads (default: 2)")
    _add_format_options(watch_parser)
    watch_parser.set_defaults(func=cmd_watch)

    # Flags command
    flags_parser = subparsers.add_parser("flags", help="List flag names and bit values")
    flags_parser.add_argument("--alt", action="store_true", help="Show the alternate name table")
    flags_parser.set_defaults(func=cmd_flags)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    # Load .env from the working directory
    env_file = Path.cwd() / ".env"
    if env_file.exists():
        load_dotenv(env_file)

    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose, args.quiet)

    try:
        return args.func(args)
    except ConfigError as e:
        logger.error(f"Invalid options: {e}")
        return EXIT_CONFIG


if __name__ == "__main__":
    sys.exit(main())
