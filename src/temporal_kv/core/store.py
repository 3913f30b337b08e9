"""Temporal store implementation - main public API.

Orchestrates the history log and the current-state table.
"""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import TYPE_CHECKING, Callable

from ..components.history import SimpleHistoryLog
from ..components.state import SimpleCurrentStateTable
from .errors import CorruptRecordError, StorageIOError
from .types import Key, Record, StoreStats, Timestamp, Value, Version

if TYPE_CHECKING:
    from ..interfaces.history import HistoryLog
    from ..interfaces.state import CurrentStateTable
    from .config import TemporalConfig

logger = logging.getLogger(__name__)


def wall_clock_seconds() -> Timestamp:
    """Current wall-clock time in whole seconds since the epoch."""
    return int(time.time())


class TemporalStore:
    """Key-value store that remembers every value a key has held.

    Args:
        config: Store configuration
        history: History log to use; opened from config when omitted
        state: Current-state table to use; created from config when omitted
        clock: Callable returning the timestamp for each upsert

    Public API:
        - upsert(key, value): Insert or update, returns the write timestamp
        - get(key): Current value
        - travel(key, ts): Value at or before ts
        - diff(key): Every version, oldest first
        - rebuild(): Reconstruct the current-state table from the log

    Invariants:
        - Every write reaches the history log before the current-state table
        - Writers are serialised by one lock
        - After a successful upsert, get(key) returns the value of the
          most recently appended record for key
        - Same-timestamp writes are ordered by append order

    Queries that read history cost O(versions of key) with the per-key
    index and O(history size) without it.
    """

    def __init__(
        self,
        config: TemporalConfig,
        history: HistoryLog | None = None,
        state: CurrentStateTable | None = None,
        clock: Callable[[], Timestamp] | None = None,
    ):
        self.config = config
        self.data_dir = Path(config.data_dir)
        self._lock = threading.Lock()
        self._clock = clock or wall_clock_seconds
        self._pending_writes = 0

        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageIOError(
                f"Cannot create data directory {self.data_dir}: {e}", operation="open"
            ) from e

        if history is None:
            history = SimpleHistoryLog(
                self.data_dir / config.log_filename,
                fsync_every_write=config.fsync_every_write,
                index_history=config.index_history,
            )
        if state is None:
            state = SimpleCurrentStateTable(self.data_dir / config.snapshot_filename)
        self._history = history
        self._state = state

        try:
            self._recover()
        except Exception:
            self._history.close()
            raise

        logger.info(f"Initialized temporal store at {self.data_dir}")

    def _recover(self) -> None:
        """Load the snapshot, rebuilding it from the log if missing or stale."""
        log_count = len(self._history)

        try:
            loaded = self._state.load_from_disk()
        except CorruptRecordError as e:
            logger.warning(f"{e}; rebuilding from history log")
            loaded = False

        if not loaded:
            self._state.rebuild(self._history)
        elif self._state.record_count != log_count:
            logger.warning(
                f"Snapshot reflects {self._state.record_count} records but the history "
                f"log has {log_count}; rebuilding"
            )
            self._state.rebuild(self._history)

    def upsert(self, key: Key, value: Value) -> Timestamp:
        """Insert or update key with value.

        The record is appended to the history log and synced before the
        current-state table is touched.

        Returns:
            Timestamp assigned to the write

        Raises:
            StorageIOError: If the log append fails (``durable`` is False and
                nothing changed), or if the snapshot could not be saved after
                the append (``durable`` is True: the write is in the log and
                visible to get/travel/diff, and the snapshot is repaired on
                the next open or rebuild()).
        """
        if not isinstance(key, str):
            raise TypeError(f"key must be str, not {type(key).__name__}")
        if not isinstance(value, (bytes, bytearray, memoryview)):
            raise TypeError(f"value must be bytes-like, not {type(value).__name__}")
        value = bytes(value)

        with self._lock:
            ts = self._clock()
            try:
                self._history.append(key, value, ts)
            except StorageIOError as e:
                raise StorageIOError(
                    f"upsert of {key!r} failed: {e}",
                    operation="upsert",
                    key=key,
                    timestamp=ts,
                ) from e

            self._state.put(key, value)
            self._pending_writes += 1
            if self._pending_writes >= self.config.snapshot_every_writes:
                try:
                    self._persist_locked()
                except StorageIOError as e:
                    raise StorageIOError(
                        f"upsert of {key!r} is logged but the snapshot was not saved: {e}",
                        operation="upsert",
                        key=key,
                        durable=True,
                        timestamp=ts,
                    ) from e

        return ts

    def _persist_locked(self) -> None:
        """Internal snapshot save (must hold lock)."""
        self._state.persist(len(self._history))
        self._pending_writes = 0

    def get(self, key: Key) -> Value | None:
        """Retrieve the current value for key."""
        return self._state.get(key)

    def travel(self, key: Key, ts: Timestamp) -> Value | None:
        """Retrieve the value key held at or before ts."""
        record = self._history.find_at_or_before(key, ts)
        return record.value if record is not None else None

    def travel_record(self, key: Key, ts: Timestamp) -> Record | None:
        """Like travel(), but return the matched record with its own timestamp."""
        return self._history.find_at_or_before(key, ts)

    def diff(self, key: Key) -> list[Version]:
        """Return every version of key in write order, oldest first."""
        return [Version(r.timestamp, r.value) for r in self._history.records_for(key)]

    def keys(self) -> list[Key]:
        """Return every key that has been written, in sorted order."""
        return self._state.keys()

    def rebuild(self) -> int:
        """Reconstruct the current-state table from the history log.

        Returns:
            Number of records replayed
        """
        with self._lock:
            count = self._state.rebuild(self._history)
            self._pending_writes = 0
        return count

    def stats(self) -> StoreStats:
        """Return a summary of the store's state."""
        with self._lock:
            return StoreStats(
                keys=len(self._state),
                records=len(self._history),
                corrupt_frames=self._history.open_stats.corrupt,
                corrupt_reads=self._history.corrupt_reads,
                pending_snapshot_writes=self._pending_writes,
            )

    def close(self) -> None:
        """Save any pending snapshot and release resources."""
        logger.info("Closing temporal store")
        with self._lock:
            try:
                if self._pending_writes:
                    self._persist_locked()
            finally:
                self._history.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
