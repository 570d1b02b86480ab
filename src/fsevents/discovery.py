"""
Resolution of command-line paths into an ordered list of journal files.
"""

import logging
import os
import re
import time
from pathlib import Path
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)

_HEX_NAME = re.compile(r"^[0-9a-fA-F]+$")

SECONDS_PER_DAY = 86400


def is_journal_name(name: str) -> bool:
    """Journal files are named with hex digits only (the next event id)."""
    return bool(_HEX_NAME.match(name))


def _within_window(path: Path, cutoff: Optional[float]) -> bool:
    if cutoff is None:
        return True
    try:
        return path.stat().st_mtime >= cutoff
    except OSError:
        # Unreadable files are kept so the run reports them
        return True


def discover_files(
    paths: Iterable[Path],
    days: Optional[int] = None,
    now: Optional[float] = None,
) -> List[Path]:
    """
    Expand paths into the journal files to parse.

    Files given explicitly are always included, missing ones too, so the
    pipeline can report them. Directories are walked recursively in sorted
    order and contribute every hex-named file.

    Args:
        paths: Files and directories, in the order given by the user
        days: Only keep files modified within this many days
        now: Reference time for the days window (defaults to now)

    Returns:
        De-duplicated list of files, in discovery order
    """
    cutoff = None
    if days is not None:
        cutoff = (now if now is not None else time.time()) - days * SECONDS_PER_DAY

    found: List[Path] = []
    seen = set()

    def _add(path: Path) -> None:
        key = path.resolve() if path.exists() else path.absolute()
        if key in seen:
            return
        seen.add(key)
        if _within_window(path, cutoff):
            found.append(path)
        else:
            logger.debug(f"Skipping {path}: older than {days} day(s)")

    for path in paths:
        path = Path(path)
        if path.is_dir():
            for dirpath, dirnames, filenames in os.walk(path):
                dirnames.sort()
                for name in sorted(filenames):
                    if is_journal_name(name):
                        _add(Path(dirpath) / name)
        else:
            _add(path)

    logger.info(f"Found {len(found)} journal file(s)")
    return found
