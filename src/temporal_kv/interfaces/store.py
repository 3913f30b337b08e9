"""Protocol definition for the temporal store."""

from __future__ import annotations

from typing import Protocol

from ..core.types import Key, Timestamp, Value, Version


class TemporalKV(Protocol):
    """Public API of the temporal key-value store."""

    def upsert(self, key: Key, value: Value) -> Timestamp:
        """Insert or update key; returns the timestamp assigned to the write."""
        ...

    def get(self, key: Key) -> Value | None:
        """Return the current value for key or None if never written."""
        ...

    def travel(self, key: Key, ts: Timestamp) -> Value | None:
        """Return the value key held at or before ts, or None."""
        ...

    def diff(self, key: Key) -> list[Version]:
        """Return every version of key, oldest first."""
        ...

    def keys(self) -> list[Key]:
        """Return every key that has been written."""
        ...

    def rebuild(self) -> int:
        """Reconstruct current values from history; return records replayed."""
        ...
