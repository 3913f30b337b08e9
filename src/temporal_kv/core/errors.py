"""Exception hierarchy for the temporal key-value store.

Defines all custom exceptions used throughout the implementation.
A key that does not exist (or did not exist at a given time) is never an
error; lookups return ``None`` instead.
"""

from __future__ import annotations


class TemporalKVError(Exception):
    """Base exception for all temporal store errors."""
    pass


class StorageIOError(TemporalKVError):
    """Raised when the history log or snapshot cannot be read or written.

    Attributes:
        operation: Store operation that failed (``"upsert"``, ``"open"``, ...)
        key: Key involved, if any
        durable: True when the record already reached the history log
        timestamp: Timestamp assigned to the record, if one was assigned
    """

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        key: str | None = None,
        durable: bool = False,
        timestamp: int | None = None,
    ):
        super().__init__(message)
        self.operation = operation
        self.key = key
        self.durable = durable
        self.timestamp = timestamp


class CorruptRecordError(TemporalKVError):
    """Raised when a log frame or the snapshot is malformed.

    Attributes:
        offset: Byte offset of the frame, if the error concerns a log frame
        truncated: True when the frame runs past the end of the readable log
        frame_end: Offset just past the frame when its length fields were
            readable, so a reader can step over it
    """

    def __init__(
        self,
        message: str,
        *,
        offset: int | None = None,
        truncated: bool = False,
        frame_end: int | None = None,
    ):
        super().__init__(message)
        self.offset = offset
        self.truncated = truncated
        self.frame_end = frame_end
