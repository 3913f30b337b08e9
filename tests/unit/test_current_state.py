"""Unit tests for the current-state table implementation."""

import json
import shutil
import tempfile
from pathlib import Path

import pytest

from temporal_kv.components.history import SimpleHistoryLog
from temporal_kv.components.state import SimpleCurrentStateTable
from temporal_kv.core.errors import CorruptRecordError, StorageIOError


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests."""
    tmpdir = tempfile.mkdtemp()
    yield tmpdir
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def snapshot_path(temp_dir):
    """Create snapshot file path."""
    return Path(temp_dir) / "current.json"


@pytest.fixture
def table(snapshot_path):
    """Create empty current-state table for tests."""
    return SimpleCurrentStateTable(snapshot_path)


@pytest.fixture
def history(temp_dir):
    """Create history log for tests."""
    log = SimpleHistoryLog(Path(temp_dir) / "history.log")
    yield log
    log.close()


def test_put_get(table):
    """Test basic put and get operations."""
    table.put("key1", b"value1")
    table.put("key2", b"value2")

    assert table.get("key1") == b"value1"
    assert table.get("key2") == b"value2"
    assert table.get("nonexistent") is None
    assert "key1" in table
    assert "nonexistent" not in table
    assert len(table) == 2


def test_put_overwrites(table):
    """Test that put overwrites the previous value."""
    table.put("key1", b"value1")
    table.put("key1", b"value2")

    assert table.get("key1") == b"value2"
    assert len(table) == 1


def test_keys_sorted(table):
    """Test that keys and items come back in sorted key order."""
    for key in ["delta", "alpha", "charlie", "bravo"]:
        table.put(key, key.encode())

    assert table.keys() == ["alpha", "bravo", "charlie", "delta"]
    assert [k for k, _ in table.items()] == table.keys()


def test_load_missing_snapshot(table):
    """Test that a missing snapshot is reported, not raised."""
    assert table.load_from_disk() is False
    assert len(table) == 0


def test_persist_and_load(table, snapshot_path):
    """Test that a persisted table loads back identically."""
    table.put("text", b"hello")
    table.put("binary", b"\x00\xff\n\t")
    table.put("empty", b"")
    table.persist(record_count=7)

    loaded = SimpleCurrentStateTable(snapshot_path)
    assert loaded.load_from_disk() is True
    assert loaded.get("text") == b"hello"
    assert loaded.get("binary") == b"\x00\xff\n\t"
    assert loaded.get("empty") == b""
    assert loaded.record_count == 7


def test_persist_is_atomic(table, snapshot_path):
    """Test that persist leaves no temp file and writes valid JSON."""
    table.put("k", b"v")
    table.persist(record_count=1)

    assert not snapshot_path.with_suffix(".tmp").exists()
    doc = json.loads(snapshot_path.read_text(encoding="utf-8"))
    assert doc["format"] == 1
    assert doc["record_count"] == 1
    assert set(doc["entries"]) == {"k"}


def test_persist_keeps_record_count_when_omitted(table, snapshot_path):
    """Test that persist without a count keeps the previous one."""
    table.persist(record_count=3)
    table.put("k", b"v")
    table.persist()

    loaded = SimpleCurrentStateTable(snapshot_path)
    loaded.load_from_disk()
    assert loaded.record_count == 3


@pytest.mark.parametrize(
    "content",
    [
        b"{not json",
        b"[]",
        b'{"format": 99, "record_count": 0, "entries": {}}',
        b'{"format": 1, "entries": {}}',
        b'{"format": 1, "record_count": 1, "entries": {"k": "***"}}',
        b"\xff\xfe",
    ],
)
def test_corrupt_snapshot_detected(table, snapshot_path, content):
    """Test that undecodable snapshots raise CorruptRecordError."""
    snapshot_path.write_bytes(content)

    with pytest.raises(CorruptRecordError, match="Corrupt snapshot"):
        table.load_from_disk()


def test_persist_failure_raises_storage_error(temp_dir):
    """Test that an unwritable snapshot location surfaces as StorageIOError."""
    blocker = Path(temp_dir) / "not_a_dir"
    blocker.write_text("file in the way")
    table = SimpleCurrentStateTable(blocker / "current.json")
    table.put("k", b"v")

    with pytest.raises(StorageIOError, match="Failed to persist snapshot"):
        table.persist(record_count=1)


def test_rebuild_keeps_last_value_per_key(table, history, snapshot_path):
    """Test that rebuild replays the log keeping the last value per key."""
    history.append("a", b"1", 10)
    history.append("b", b"2", 11)
    history.append("a", b"3", 12)
    history.append("a", b"4", 12)

    table.put("stale", b"should disappear")
    count = table.rebuild(history)

    assert count == 4
    assert table.get("a") == b"4"
    assert table.get("b") == b"2"
    assert table.get("stale") is None
    assert table.record_count == 4

    loaded = SimpleCurrentStateTable(snapshot_path)
    loaded.load_from_disk()
    assert dict(loaded.items()) == {"a": b"4", "b": b"2"}


def test_rebuild_is_idempotent(table, history):
    """Test that rebuilding twice equals rebuilding once."""
    for i in range(20):
        history.append(f"k{i % 4}", str(i).encode(), 100 + i)

    table.rebuild(history)
    once = dict(table.items())
    table.rebuild(history)
    twice = dict(table.items())

    assert once == twice
    for key, value in twice.items():
        assert history.records_for(key)[-1].value == value


def test_rebuild_from_empty_log(table, history, snapshot_path):
    """Test rebuild over an empty log writes an empty snapshot."""
    assert table.rebuild(history) == 0
    assert len(table) == 0
    assert snapshot_path.exists()
