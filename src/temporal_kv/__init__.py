"""Temporal KV - append-only, time-travelling key-value store in Python."""

from .core.config import TemporalConfig
from .core.errors import (
    TemporalKVError,
    StorageIOError,
    CorruptRecordError,
)
from .core.store import TemporalStore
from .core.types import Key, Value, Timestamp, Record, Version, RecordHandle

__all__ = [
    "TemporalConfig",
    "TemporalKVError",
    "StorageIOError",
    "CorruptRecordError",
    "TemporalStore",
    "Key",
    "Value",
    "Timestamp",
    "Record",
    "Version",
    "RecordHandle",
]
