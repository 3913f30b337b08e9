"""Current-state table implementation.

Keeps the latest value of every key in memory and persists it as a JSON
snapshot with atomic write-temp-then-rename updates.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
import threading
from pathlib import Path
from typing import TYPE_CHECKING

from sortedcontainers import SortedDict

from ..core.errors import CorruptRecordError, StorageIOError

if TYPE_CHECKING:
    from collections.abc import Iterator

    from ..core.types import Key, Value
    from ..interfaces.history import HistoryLog

logger = logging.getLogger(__name__)

SNAPSHOT_FORMAT = 1


class SimpleCurrentStateTable:
    """Latest value per key, backed by a JSON snapshot.

    Args:
        snapshot_path: Path to snapshot JSON file

    Invariants:
        - Keys are always maintained in sorted order
        - Snapshot updates are atomic via write-temp-then-rename
        - ``record_count`` is the number of log records the table reflects
        - Thread-safe via lock
    """

    def __init__(self, snapshot_path: str | Path):
        self.snapshot_path = Path(snapshot_path)
        self._lock = threading.Lock()
        self._data: SortedDict = SortedDict()
        self.record_count = 0

    def put(self, key: Key, value: Value) -> None:
        """Insert or overwrite the current value of key."""
        with self._lock:
            self._data[key] = bytes(value)

    def get(self, key: Key) -> Value | None:
        """Return the current value of key, or None if the key is absent."""
        with self._lock:
            return self._data.get(key)

    def __contains__(self, key: Key) -> bool:
        with self._lock:
            return key in self._data

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def keys(self) -> list[Key]:
        """Return all keys in sorted order."""
        with self._lock:
            return list(self._data.keys())

    def items(self) -> Iterator[tuple[Key, Value]]:
        """Return iterator of (key, value) pairs in sorted key order."""
        with self._lock:
            snapshot = list(self._data.items())
        yield from snapshot

    def load_from_disk(self) -> bool:
        """Replace the in-memory table with the snapshot on disk.

        Returns:
            True if a snapshot was loaded, False if none exists

        Raises:
            CorruptRecordError: If the snapshot cannot be decoded
            StorageIOError: If the snapshot exists but cannot be read
        """
        try:
            with open(self.snapshot_path, "rb") as f:
                raw = f.read()
        except FileNotFoundError:
            logger.info(f"No existing snapshot at {self.snapshot_path}, starting fresh")
            return False
        except OSError as e:
            raise StorageIOError(
                f"Cannot read snapshot {self.snapshot_path}: {e}", operation="load"
            ) from e

        try:
            doc = json.loads(raw)
            if doc.get("format") != SNAPSHOT_FORMAT:
                raise ValueError(f"unsupported snapshot format {doc.get('format')!r}")
            record_count = int(doc["record_count"])
            data = SortedDict(
                (key, base64.b64decode(encoded, validate=True))
                for key, encoded in doc["entries"].items()
            )
        except (ValueError, KeyError, TypeError, AttributeError, binascii.Error) as e:
            raise CorruptRecordError(f"Corrupt snapshot {self.snapshot_path}: {e}") from e

        with self._lock:
            self._data = data
            self.record_count = record_count
        logger.info(
            f"Loaded snapshot from {self.snapshot_path} "
            f"({len(data)} keys, {record_count} records)"
        )
        return True

    def persist(self, record_count: int | None = None) -> None:
        """Write the whole table to disk atomically.

        Args:
            record_count: Number of log records the table now reflects;
                keeps the current count when omitted

        Raises:
            StorageIOError: If the snapshot cannot be written
        """
        with self._lock:
            if record_count is not None:
                self.record_count = record_count
            doc = {
                "format": SNAPSHOT_FORMAT,
                "record_count": self.record_count,
                "entries": {
                    key: base64.b64encode(value).decode("ascii")
                    for key, value in self._data.items()
                },
            }

        temp_path = self.snapshot_path.with_suffix(".tmp")
        try:
            self.snapshot_path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(doc, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, self.snapshot_path)
        except OSError as e:
            raise StorageIOError(
                f"Failed to persist snapshot {self.snapshot_path}: {e}", operation="persist"
            ) from e
        logger.debug(f"Saved snapshot to {self.snapshot_path}")

    def rebuild(self, history_log: HistoryLog) -> int:
        """Reconstruct the table from the history log and persist it.

        Replays every record in append order, keeping the last value seen
        per key. Safe to run at any time; running it twice gives the same
        table as running it once.

        Returns:
            Number of records replayed
        """
        data: SortedDict = SortedDict()
        count = 0
        for record in history_log.scan_all():
            data[record.key] = record.value
            count += 1

        with self._lock:
            self._data = data
            self.record_count = count
        self.persist()

        logger.info(f"Rebuilt current state from {count} records ({len(data)} keys)")
        return count
