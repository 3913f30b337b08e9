"""Protocol definitions for the history log."""

from __future__ import annotations

from collections.abc import Iterator
from typing import Protocol

from ..core.types import Key, Record, RecordHandle, ScanStats, Timestamp, Value


class HistoryLog(Protocol):
    """Append-only, durable sequence of timestamped records."""

    open_stats: ScanStats
    corrupt_reads: int

    def append(self, key: Key, value: Value, ts: Timestamp) -> RecordHandle:
        """Append a record after all previously appended records.

        Invariants:
            - Must be durable on return if fsync_every_write is True
            - Raises StorageIOError if the record could not be written
        """
        ...

    def scan_all(self) -> Iterator[Record]:
        """Iterate all well-formed records in append order, from the start."""
        ...

    def records_for(self, key: Key) -> list[Record]:
        """Return every record for key in append order."""
        ...

    def find_at_or_before(self, key: Key, ts: Timestamp) -> Record | None:
        """Return the last-appended record for key with timestamp <= ts."""
        ...

    def keys(self) -> list[Key]:
        """Return every key with at least one record."""
        ...

    def __len__(self) -> int:
        """Number of well-formed records."""
        ...

    def close(self) -> None:
        """Close writer and release resources."""
        ...
