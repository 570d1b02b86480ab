"""
Record filtering on path and flag predicates.
"""

import re
from typing import Iterable, Optional, Pattern

from .exceptions import ConfigError
from .flags import flags_to_mask, format_flags


class RecordFilter:
    """
    Immutable predicate over decoded records.

    A record passes when it matches every configured predicate: an
    unanchored regex search on the path, and either an "any of" or an
    "all of" flag mask. The two flag predicates are mutually exclusive.
    """

    def __init__(
        self,
        path_pattern: Optional[str] = None,
        any_flags: Iterable[str] = (),
        all_flags: Iterable[str] = (),
    ):
        """
        Build the filter.

        Args:
            path_pattern: Regex searched for anywhere in the path
            any_flags: Flag names, at least one of which must be set
            all_flags: Flag names, all of which must be set

        Raises:
            ConfigError: Invalid regex, unknown flag, or both flag lists given
        """
        any_flags = list(any_flags or ())
        all_flags = list(all_flags or ())
        if any_flags and all_flags:
            raise ConfigError("Only one of any-flags and all-flags may be given")

        pattern: Optional[Pattern[str]] = None
        if path_pattern:
            try:
                pattern = re.compile(path_pattern)
            except re.error as e:
                raise ConfigError(f"Invalid path filter {path_pattern!r}: {e}") from e

        self._pattern = pattern
        self._any_mask = flags_to_mask(any_flags)
        self._all_mask = flags_to_mask(all_flags)

    @classmethod
    def accept_all(cls) -> "RecordFilter":
        return cls()

    @property
    def pattern(self) -> Optional[str]:
        return self._pattern.pattern if self._pattern else None

    @property
    def any_mask(self) -> int:
        return self._any_mask

    @property
    def all_mask(self) -> int:
        return self._all_mask

    @property
    def is_noop(self) -> bool:
        return self._pattern is None and not self._any_mask and not self._all_mask

    def passes(self, record) -> bool:
        if self._any_mask and not record.flags & self._any_mask:
            return False
        if self._all_mask and record.flags & self._all_mask != self._all_mask:
            return False
        if self._pattern is not None and self._pattern.search(record.path) is None:
            return False
        return True

    __call__ = passes

    def __repr__(self) -> str:
        parts = []
        if self._pattern is not None:
            parts.append(f"path={self._pattern.pattern!r}")
        if self._any_mask:
            parts.append(f"any={format_flags(self._any_mask)!r}")
        if self._all_mask:
            parts.append(f"all={format_flags(self._all_mask)!r}")
        return f"RecordFilter({', '.join(parts)})"
