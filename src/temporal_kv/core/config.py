"""Configuration for the temporal key-value store.

Defines all tunable parameters for the storage engine.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class TemporalConfig:
    """Configuration parameters for the temporal store.

    Attributes:
        data_dir: Root directory for all persistent data
        log_filename: File name of the history log inside data_dir
        snapshot_filename: File name of the current-state snapshot inside data_dir
        fsync_every_write: Whether to fsync the log after each append
        snapshot_every_writes: Persist the snapshot every N upserts (1 = every upsert)
        index_history: Whether to keep a per-key index of log offsets
    """

    data_dir: str
    log_filename: str = "history.log"
    snapshot_filename: str = "current.json"
    fsync_every_write: bool = True
    snapshot_every_writes: int = 1
    index_history: bool = True

    def __post_init__(self) -> None:
        if self.snapshot_every_writes < 1:
            raise ValueError(
                f"snapshot_every_writes must be >= 1, got {self.snapshot_every_writes}"
            )
