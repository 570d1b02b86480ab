"""Configuration for the watch engine."""

import fnmatch
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import List

from src.fsevents.config import STDOUT, OutputFormat, OutputSpec
from src.fsevents.discovery import is_journal_name

DEFAULT_ROOTS = (
    Path("/System/Volumes/Data/.fseventsd"),
    Path("/.fseventsd"),
)


def default_roots() -> List[Path]:
    """The live journal directory of the running system, if there is one."""
    for root in DEFAULT_ROOTS:
        if root.is_dir():
            return [root]
    return []


def default_debounce_ms() -> int:
    try:
        return int(os.environ.get("FSE_DUMP_DEBOUNCE_MS", "1000"))
    except ValueError:
        return 1000


@dataclass
class WatcherConfig:
    """
    Configuration options for the watch engine.

    Attributes:
        roots: Directories to watch for new journal files
        debounce_ms: Quiet period after the last change before a file is parsed
        flush_interval_ms: How often pending files are checked for settling
        recursive: Whether to watch directories recursively
        polling: Use a polling observer instead of the native backend
        hex_names_only: Only consider hex-named files (journal naming)
        ignore_patterns: Glob patterns for files to ignore
        output: Continuous output sink for decoded records
        max_workers: Parser threads for settled files
    """
    roots: List[Path] = field(default_factory=default_roots)
    debounce_ms: int = field(default_factory=default_debounce_ms)
    flush_interval_ms: int = 100
    recursive: bool = False
    polling: bool = False
    hex_names_only: bool = True
    ignore_patterns: List[str] = field(default_factory=lambda: [
        "fseventsd-uuid",
        "*.tmp",
        "*.swp",
        "*~",
        ".DS_Store",
    ])
    output: OutputSpec = field(default_factory=lambda: OutputSpec(
        OutputFormat.JSON, STDOUT, continuous=True,
    ))
    max_workers: int = 2

    def __post_init__(self):
        self.roots = [Path(r) for r in self.roots]
        if self.debounce_ms < 0:
            raise ValueError(f"debounce_ms must not be negative: {self.debounce_ms}")
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be at least 1: {self.max_workers}")
        # Watch mode never closes its document, so output is always continuous
        if not self.output.continuous:
            self.output = replace(self.output, continuous=True)

    def should_ignore(self, path: Path) -> bool:
        """
        Check if a path should be ignored based on ignore patterns.

        Args:
            path: Path to check

        Returns:
            True if the path should be ignored
        """
        path_str = str(path)
        name = path.name

        for pattern in self.ignore_patterns:
            if fnmatch.fnmatch(name, pattern):
                return True
            if fnmatch.fnmatch(path_str, f"*/{pattern}"):
                return True
            if fnmatch.fnmatch(path_str, pattern):
                return True

        return False

    def is_candidate(self, path: Path) -> bool:
        """Check if a changed file should be parsed once it settles."""
        if self.should_ignore(path):
            return False
        if self.hex_names_only and not is_journal_name(path.name):
            return False
        return True
