"""
Per-path aggregation of decoded records.
"""

from typing import Dict, Iterable, Iterator, List, Optional

from .models import Record, UniqueEntry


class UniqueAggregator:
    """
    Builds one UniqueEntry per distinct path.

    Not thread-safe: each worker fills its own aggregator and the
    coordinating thread combines them with merge().
    """

    def __init__(self):
        self._entries: Dict[str, UniqueEntry] = {}

    def add(self, record: Record) -> None:
        entry = self._entries.get(record.path)
        if entry is None:
            entry = self._entries[record.path] = UniqueEntry(record.path)
        entry.update(record.flags)

    def update(self, records: Iterable[Record]) -> None:
        for record in records:
            self.add(record)

    def merge(self, other: "UniqueAggregator") -> None:
        """Fold another aggregator in: counts are summed, flags OR-ed."""
        for path, theirs in other._entries.items():
            mine = self._entries.get(path)
            if mine is None:
                self._entries[path] = UniqueEntry(path, theirs.count, theirs.combined_flags)
            else:
                mine.count += theirs.count
                mine.combined_flags |= theirs.combined_flags

    def get(self, path: str) -> Optional[UniqueEntry]:
        return self._entries.get(path)

    def entries(self) -> List[UniqueEntry]:
        """All entries sorted by path."""
        return [self._entries[p] for p in sorted(self._entries)]

    def __iter__(self) -> Iterator[UniqueEntry]:
        return iter(self.entries())

    def __contains__(self, path: object) -> bool:
        return path in self._entries

    def __len__(self) -> int:
        return len(self._entries)
