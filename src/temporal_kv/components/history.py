"""History log implementation.

Provides a durable, append-only log of timestamped (key, value) records with
CRC32 checksums, plus the time-travel lookup over it.
"""

from __future__ import annotations

import logging
import os
import struct
import threading
import zlib
from pathlib import Path
from typing import BinaryIO, Iterator

from ..core.errors import CorruptRecordError, StorageIOError
from ..core.types import Key, Record, RecordHandle, ScanStats, Timestamp, Value

logger = logging.getLogger(__name__)

# Frame format (little endian):
# [magic (4B)] [ts (8B, signed)] [key_len (4B)] [key utf-8] [value_len (8B)] [value] [crc32 (4B)]
MAGIC = 0x544B5601  # "TKV" + version
_MAGIC_BYTES = struct.pack("<I", MAGIC)
_HEADER = struct.Struct("<IqI")
_VALUE_LEN = struct.Struct("<Q")
_CRC = struct.Struct("<I")
_RESYNC_CHUNK = 64 * 1024


def encode_record(key: Key, value: Value, ts: Timestamp) -> bytes:
    """Encode one record as a self-delimiting frame."""
    key_bytes = key.encode("utf-8")
    payload = (
        _HEADER.pack(MAGIC, ts, len(key_bytes))
        + key_bytes
        + _VALUE_LEN.pack(len(value))
        + bytes(value)
    )
    return payload + _CRC.pack(zlib.crc32(payload))


def _read_exact(f: BinaryIO, n: int, what: str, offset: int, end: int) -> bytes:
    if f.tell() + n > end:
        raise CorruptRecordError(
            f"Truncated {what} at offset {offset}", offset=offset, truncated=True
        )
    data = f.read(n)
    if len(data) < n:
        raise CorruptRecordError(
            f"Truncated {what} at offset {offset}", offset=offset, truncated=True
        )
    return data


def decode_frame(f: BinaryIO, offset: int, end: int) -> tuple[Record, int]:
    """Decode the frame starting at offset.

    Args:
        f: Binary file opened for reading
        offset: Byte offset of the frame
        end: Offset past which no bytes belong to the readable log

    Returns:
        (record, offset of the next frame)

    Raises:
        CorruptRecordError: If the frame is truncated, has a bad magic or a CRC mismatch
    """
    f.seek(offset)
    header = _read_exact(f, _HEADER.size, "header", offset, end)
    magic, ts, key_len = _HEADER.unpack(header)
    if magic != MAGIC:
        raise CorruptRecordError(f"Invalid magic {magic:x} at offset {offset}", offset=offset)

    key_bytes = _read_exact(f, key_len, "key", offset, end)
    value_len_bytes = _read_exact(f, _VALUE_LEN.size, "value_len", offset, end)
    (value_len,) = _VALUE_LEN.unpack(value_len_bytes)
    value = _read_exact(f, value_len, "value", offset, end)
    (stored_crc,) = _CRC.unpack(_read_exact(f, _CRC.size, "crc", offset, end))
    frame_end = f.tell()

    computed_crc = zlib.crc32(header + key_bytes + value_len_bytes + value)
    if stored_crc != computed_crc:
        raise CorruptRecordError(
            f"CRC mismatch at offset {offset}: expected {computed_crc:x}, got {stored_crc:x}",
            offset=offset,
            frame_end=frame_end,
        )

    try:
        key = key_bytes.decode("utf-8")
    except UnicodeDecodeError as e:
        raise CorruptRecordError(
            f"Undecodable key at offset {offset}", offset=offset, frame_end=frame_end
        ) from e

    return Record(ts, key, value), frame_end


def _resync(f: BinaryIO, start: int, end: int) -> int | None:
    """Return the offset of the next magic number at or after start, or None."""
    pos = start
    while pos < end:
        f.seek(pos)
        chunk = f.read(min(_RESYNC_CHUNK, end - pos))
        idx = chunk.find(_MAGIC_BYTES)
        if idx >= 0:
            return pos + idx
        if pos + len(chunk) >= end:
            return None
        # Overlap so a magic split across chunks is still found
        pos += len(chunk) - (len(_MAGIC_BYTES) - 1)
    return None


def iter_frames(f: BinaryIO, end: int, stats: ScanStats) -> Iterator[tuple[int, Record]]:
    """Yield (offset, record) for every well-formed frame before end.

    Malformed frames are skipped:
        - a frame running past end is a torn tail; scanning stops there and
          its offset is left in ``stats.torn_offset``
        - a frame with readable lengths but a bad CRC is stepped over whole,
          so nothing inside its payload is ever parsed as a frame
        - a frame with a damaged magic number has no usable length, so the
          reader resynchronises on the next magic number
    """
    offset = 0
    while offset < end:
        try:
            record, next_offset = decode_frame(f, offset, end)
        except CorruptRecordError as e:
            if e.truncated:
                resume = None
                stats.torn_offset = offset
            elif e.frame_end is not None:
                resume = e.frame_end
            else:
                resume = _resync(f, offset + 1, end)
            skipped = (end if resume is None else resume) - offset
            stats.corrupt += 1
            stats.bytes_skipped += skipped
            logger.warning(f"Skipping corrupt frame ({e}); {skipped} bytes skipped")
            if resume is None:
                break
            offset = resume
            continue

        stats.records += 1
        yield offset, record
        offset = next_offset


class SimpleHistoryLog:
    """Append-only history of timestamped records with CRC32 checksums.

    Args:
        path: Path to log file
        fsync_every_write: Whether to fsync after each append
        index_history: Whether to keep a per-key index of frame offsets

    Invariants:
        - Records are never rewritten or reordered
        - A record is visible to readers only once its frame is fully written
        - A torn tail found at open is moved to a side file and cut off
          before any new append, so appends never land behind it
        - Corrupt frames are skipped during scans, never fatal
        - Records are returned in append order
    """

    def __init__(
        self,
        path: str | Path,
        fsync_every_write: bool = True,
        index_history: bool = True,
    ):
        self.path = Path(path)
        self.fsync_every_write = fsync_every_write
        self.index_history = index_history
        self._lock = threading.Lock()
        self._fd: BinaryIO | None = None
        self._read_only = False
        self._count = 0
        self._committed = 0
        self._offsets: dict[Key, list[int]] | None = {} if index_history else None
        self.corrupt_reads = 0
        self.open_stats = ScanStats()
        self.last_scan = ScanStats()
        self._open()

    def _open(self) -> None:
        """Open log file for appending and index existing frames."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._fd = open(self.path, "ab", buffering=0)
            self._committed = os.fstat(self._fd.fileno()).st_size
        except OSError as e:
            raise StorageIOError(
                f"Cannot open history log {self.path}: {e}", operation="open"
            ) from e

        for offset, record in self._scan(self.open_stats):
            self._count += 1
            if self._offsets is not None:
                self._offsets.setdefault(record.key, []).append(offset)

        if self.open_stats.torn_offset is not None:
            with self._lock:
                self._cut_torn_tail_locked(self.open_stats.torn_offset)

        logger.debug(
            f"Opened history log {self.path}: {self._count} records, "
            f"{self.open_stats.corrupt} corrupt frames, {self._committed} bytes"
        )

    def _cut_torn_tail_locked(self, offset: int) -> None:
        """Move the bytes from offset to EOF to a side file and truncate (must hold lock)."""
        side_path = self.path.with_name(f"{self.path.name}.torn-{offset}")
        end = self._committed
        self._committed = offset
        try:
            with open(self.path, "rb") as src:
                src.seek(offset)
                tail = src.read(end - offset)
            with open(side_path, "wb") as dst:
                dst.write(tail)
                dst.flush()
                os.fsync(dst.fileno())
            os.ftruncate(self._fd.fileno(), offset)
            os.fsync(self._fd.fileno())
        except OSError as e:
            self._read_only = True
            logger.error(
                f"Could not cut torn tail at offset {offset} in {self.path}: {e}; "
                f"refusing further appends"
            )
            return
        logger.warning(
            f"Cut torn tail of {end - offset} bytes at offset {offset} from {self.path}; "
            f"saved to {side_path}"
        )

    def _scan(self, stats: ScanStats) -> Iterator[tuple[int, Record]]:
        with self._lock:
            end = self._committed
        try:
            f = open(self.path, "rb")
        except FileNotFoundError:
            return
        except OSError as e:
            raise StorageIOError(
                f"Cannot read history log {self.path}: {e}", operation="scan"
            ) from e
        with f:
            yield from iter_frames(f, end, stats)

    def append(self, key: Key, value: Value, ts: Timestamp) -> RecordHandle:
        """Append a record to the log.

        Args:
            key: Record key
            value: Opaque value bytes
            ts: Timestamp assigned by the caller

        Returns:
            Handle with the record's sequence number and frame offset

        Raises:
            StorageIOError: If the frame could not be written; the partial
                frame is rolled back and the record is not part of the log.
        """
        if self._fd is None:
            raise RuntimeError("History log is closed")

        frame = encode_record(key, value, ts)

        with self._lock:
            if self._read_only:
                raise StorageIOError(
                    f"History log {self.path} is read-only after a failed append",
                    operation="append",
                    key=key,
                    timestamp=ts,
                )
            offset = None
            try:
                offset = os.fstat(self._fd.fileno()).st_size
                view = memoryview(frame)
                while view:
                    written = self._fd.write(view)
                    view = view[written:]
                if self.fsync_every_write:
                    os.fsync(self._fd.fileno())
            except OSError as e:
                if offset is not None:
                    self._rollback_locked(offset)
                raise StorageIOError(
                    f"Failed to append to history log {self.path}: {e}",
                    operation="append",
                    key=key,
                    timestamp=ts,
                ) from e

            self._committed = offset + len(frame)
            self._count += 1
            if self._offsets is not None:
                self._offsets.setdefault(key, []).append(offset)
            handle = RecordHandle(self._count, offset)

        logger.debug(f"Appended record seq={handle.sequence}, key={key!r}, ts={ts}")
        return handle

    def _rollback_locked(self, offset: int) -> None:
        """Cut a failed append off the end of the file (must hold lock)."""
        try:
            os.ftruncate(self._fd.fileno(), offset)
        except OSError as e:
            self._read_only = True
            logger.error(
                f"Could not roll back failed append at offset {offset} in {self.path}: {e}; "
                f"refusing further appends"
            )

    def scan_all(self) -> Iterator[Record]:
        """Iterate every well-formed record in append order.

        Each call starts a fresh pass from the beginning of the file.
        Counters for the pass are left in ``last_scan``.
        """
        stats = ScanStats()
        self.last_scan = stats
        for _offset, record in self._scan(stats):
            yield record

    def __iter__(self) -> Iterator[Record]:
        return self.scan_all()

    def __len__(self) -> int:
        """Number of well-formed records in the log."""
        with self._lock:
            return self._count

    def read_at(self, offset: int) -> Record:
        """Decode the single frame at offset.

        Raises:
            CorruptRecordError: If the frame is malformed
        """
        with self._lock:
            end = self._committed
        with self._open_reader() as f:
            record, _next = decode_frame(f, offset, end)
        return record

    def _open_reader(self) -> BinaryIO:
        try:
            return open(self.path, "rb")
        except OSError as e:
            raise StorageIOError(
                f"Cannot read history log {self.path}: {e}", operation="read"
            ) from e

    def _key_offsets(self, key: Key) -> tuple[list[int], int]:
        with self._lock:
            return list(self._offsets.get(key, ())), self._committed

    def _iter_indexed(self, offsets: list[int], end: int) -> Iterator[Record]:
        if not offsets:
            return
        with self._open_reader() as f:
            for offset in offsets:
                try:
                    record, _next = decode_frame(f, offset, end)
                except CorruptRecordError as e:
                    with self._lock:
                        self.corrupt_reads += 1
                    logger.warning(f"Skipping unreadable indexed frame ({e})")
                    continue
                yield record

    def records_for(self, key: Key) -> list[Record]:
        """Return every record for key in append order."""
        if self._offsets is not None:
            offsets, end = self._key_offsets(key)
            return list(self._iter_indexed(offsets, end))
        return [record for record in self.scan_all() if record.key == key]

    def find_at_or_before(self, key: Key, ts: Timestamp) -> Record | None:
        """Return the last-appended record for key whose timestamp is <= ts.

        Ties on timestamp resolve to the record appended last. Returns None
        if the key had no record at or before ts.
        """
        if self._offsets is not None:
            # Newest first; the first match is the answer
            offsets, end = self._key_offsets(key)
            for record in self._iter_indexed(offsets[::-1], end):
                if record.timestamp <= ts:
                    return record
            return None

        found = None
        for record in self.scan_all():
            if record.key == key and record.timestamp <= ts:
                found = record
        return found

    def keys(self) -> list[Key]:
        """Return every key that has at least one record, in first-write order."""
        if self._offsets is not None:
            with self._lock:
                return list(self._offsets)
        return list(dict.fromkeys(record.key for record in self.scan_all()))

    def sync(self) -> None:
        """Force data to disk (fsync)."""
        if self._fd:
            with self._lock:
                try:
                    os.fsync(self._fd.fileno())
                except OSError as e:
                    raise StorageIOError(
                        f"Failed to sync history log {self.path}: {e}", operation="sync"
                    ) from e

    def close(self) -> None:
        """Close writer and release resources."""
        if self._fd:
            self.sync()
            self._fd.close()
            self._fd = None
            logger.info(f"Closed history log {self.path}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
