"""Common type definitions for the temporal key-value store.

Defines fundamental types used across all components.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import NamedTuple

# Core primitive types
Key = str
Value = bytes
Timestamp = int


class Record(NamedTuple):
    """One immutable entry of the history log."""

    timestamp: Timestamp
    key: Key
    value: Value


class Version(NamedTuple):
    """One entry of a key's version history."""

    timestamp: Timestamp
    value: Value


class RecordHandle(NamedTuple):
    """Location of an appended record.

    Attributes:
        sequence: 1-based append index of the record in the log
        offset: Byte offset of the record's frame in the log file
    """

    sequence: int
    offset: int


@dataclass
class ScanStats:
    """Counters collected while scanning the history log."""

    records: int = 0
    corrupt: int = 0
    bytes_skipped: int = 0
    torn_offset: int | None = None


@dataclass
class StoreStats:
    """Summary of a store's state."""

    keys: int
    records: int
    corrupt_frames: int
    corrupt_reads: int
    pending_snapshot_writes: int
