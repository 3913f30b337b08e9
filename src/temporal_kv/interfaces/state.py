"""Protocol definition for the current-state table."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from ..core.types import Key, Value
    from .history import HistoryLog


class CurrentStateTable(Protocol):
    """Latest value per key, persisted as a snapshot."""

    record_count: int

    def put(self, key: Key, value: Value) -> None:
        """Insert or overwrite the current value of key."""
        ...

    def get(self, key: Key) -> Value | None:
        """Return the current value of key, or None if absent."""
        ...

    def keys(self) -> list[Key]:
        """Return all keys."""
        ...

    def __len__(self) -> int:
        """Number of keys."""
        ...

    def load_from_disk(self) -> bool:
        """Load the snapshot; return False if there is none."""
        ...

    def persist(self, record_count: int | None = None) -> None:
        """Write the whole table to disk as a unit."""
        ...

    def rebuild(self, history_log: HistoryLog) -> int:
        """Reconstruct the table from the history log; return records replayed."""
        ...
