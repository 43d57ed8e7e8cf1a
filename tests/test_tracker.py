"""
Tests for the checkpoint store.
"""
import json
import os
import time
from datetime import datetime, timedelta, timezone
import pytest
from unittest.mock import patch

from manifest_copier.exceptions import CheckpointError
from manifest_copier.models import CopySettings
from manifest_copier.tracker import CheckpointStore, default_checkpoint_dir


def make_checkpoint(store, session_id="session-1", **overrides):
    values = dict(
        session_id=session_id,
        start_time=datetime.now(timezone.utc),
        source_folder="/src",
        dest_folder="/dst",
        original_manifest=["a.jpg", "b.jpg", "c.jpg"],
        processed_files=["a.jpg"],
        failed_files=[],
        skipped_files=[],
        processed_bytes=10,
        total_bytes=30,
        settings=CopySettings(duplicate_handling="rename"),
        is_paste_mode=False,
    )
    values.update(overrides)
    return store.create_checkpoint(**values)


def test_save_and_load_round_trip(checkpoint_store):
    """Test that a saved checkpoint loads back identically."""
    checkpoint = make_checkpoint(checkpoint_store)
    assert checkpoint_store.save(checkpoint)

    loaded = checkpoint_store.load("session-1")
    assert loaded is not None
    assert loaded.to_dict() == checkpoint.to_dict()
    assert loaded.remaining_files == ["b.jpg", "c.jpg"]


def test_save_writes_json_without_leftover_temp_file(checkpoint_store, checkpoint_dir):
    """Test that saving leaves exactly one JSON checkpoint file."""
    checkpoint_store.save(make_checkpoint(checkpoint_store))

    files = sorted(p.name for p in checkpoint_dir.iterdir())
    assert files == ["session-1.checkpoint"]
    with open(checkpoint_dir / "session-1.checkpoint") as f:
        data = json.load(f)
    assert data["skipped_files"] == []
    assert data["settings"]["duplicate_handling"] == "rename"


def test_structurally_invalid_checkpoint_not_saved(checkpoint_store, checkpoint_dir):
    """Test that a checkpoint without a manifest is refused."""
    assert not checkpoint_store.save(make_checkpoint(checkpoint_store, original_manifest=[]))
    assert list(checkpoint_dir.iterdir()) == []


def test_session_id_is_sanitized(checkpoint_store, checkpoint_dir):
    """Test that unsafe characters never reach the filesystem."""
    checkpoint_store.save(make_checkpoint(checkpoint_store, session_id="../weird id"))
    assert (checkpoint_dir / ".._weird_id.checkpoint").exists()
    assert checkpoint_store.load("../weird id").session_id == "../weird id"


def test_load_missing_returns_none(checkpoint_store):
    """Test that loading an unknown session yields None."""
    assert checkpoint_store.load("nope") is None
    assert checkpoint_store.load("") is None


def test_corrupt_checkpoint_is_deleted(checkpoint_store, checkpoint_dir):
    """Test that a corrupt file is treated as absent and removed."""
    path = checkpoint_dir / "broken.checkpoint"
    path.write_text("invalid json{")

    assert checkpoint_store.load("broken") is None
    assert not path.exists()


def test_checkpoint_missing_required_field_is_deleted(checkpoint_store, checkpoint_dir):
    """Test that a checkpoint without its manifest is discarded."""
    path = checkpoint_dir / "partial.checkpoint"
    path.write_text(json.dumps({"session_id": "partial", "source_folder": "/s"}))

    assert checkpoint_store.load("partial") is None
    assert not path.exists()


def test_stale_checkpoint_is_deleted(checkpoint_store, checkpoint_dir):
    """Test that checkpoints older than seven days are discarded."""
    checkpoint = make_checkpoint(checkpoint_store)
    checkpoint.checkpoint_time = datetime.now(timezone.utc) - timedelta(days=8)
    checkpoint_store.save(checkpoint)

    assert checkpoint_store.load("session-1") is None
    assert not (checkpoint_dir / "session-1.checkpoint").exists()


def test_list_resumable_newest_first_and_prunes_finished(checkpoint_store, checkpoint_dir):
    """Test ordering and cleanup of the resumable list."""
    older = make_checkpoint(checkpoint_store, session_id="older")
    older.checkpoint_time = datetime.now(timezone.utc) - timedelta(hours=2)
    newer = make_checkpoint(checkpoint_store, session_id="newer")
    done = make_checkpoint(checkpoint_store, session_id="done",
                           processed_files=["a.jpg", "b.jpg"], failed_files=["c.jpg"])
    for checkpoint in (older, newer, done):
        checkpoint_store.save(checkpoint)

    sessions = checkpoint_store.list_resumable()
    assert [c.session_id for c in sessions] == ["newer", "older"]
    assert not (checkpoint_dir / "done.checkpoint").exists()


def test_retention_keeps_newest_files(checkpoint_dir):
    """Test that only max_checkpoints files are retained."""
    store = CheckpointStore(checkpoint_dir=checkpoint_dir, max_checkpoints=10)
    for i in range(12):
        path = checkpoint_dir / f"s{i}.checkpoint"
        store.save(make_checkpoint(store, session_id=f"s{i}"))
        stamp = time.time() - 1000 + i
        os.utime(path, (stamp, stamp))

    assert len(list(checkpoint_dir.glob("*.checkpoint"))) == 10


def test_delete(checkpoint_store, checkpoint_dir):
    """Test that delete removes the file and tolerates absence."""
    checkpoint_store.save(make_checkpoint(checkpoint_store))
    assert checkpoint_store.delete("session-1")
    assert not (checkpoint_dir / "session-1.checkpoint").exists()
    assert checkpoint_store.delete("session-1")
    assert not checkpoint_store.delete("  ")


@pytest.mark.parametrize("count,expected", [(0, False), (49, False), (50, True), (100, True)])
def test_should_save(checkpoint_store, count, expected):
    """Test the periodic save interval."""
    assert checkpoint_store.should_save(count) is expected


def test_create_checkpoint_copies_lists(checkpoint_store):
    """Test that the checkpoint does not share the caller's lists."""
    processed = ["a.jpg"]
    checkpoint = make_checkpoint(checkpoint_store, processed_files=processed,
                                 processed_bytes=-5)
    processed.append("b.jpg")
    assert checkpoint.processed_files == ["a.jpg"]
    assert checkpoint.processed_bytes == 0


def test_default_checkpoint_dir_uses_environment(tmp_path, monkeypatch):
    """Test that MANIFEST_COPIER_HOME controls the default location."""
    monkeypatch.setenv("MANIFEST_COPIER_HOME", str(tmp_path / "custom"))
    assert default_checkpoint_dir() == tmp_path / "custom" / "checkpoints"
    store = CheckpointStore()
    assert store.checkpoint_dir.exists()


def test_write_failure_returns_false_and_cleans_up(checkpoint_store, checkpoint_dir):
    """Test that a failed write is reported and leaves no temp file."""
    with patch("manifest_copier.tracker.json.dump", side_effect=TypeError("not serializable")):
        assert not checkpoint_store.save(make_checkpoint(checkpoint_store))
    assert list(checkpoint_dir.iterdir()) == []

    with patch("manifest_copier.tracker.json.dump", side_effect=TypeError("not serializable")):
        with pytest.raises(CheckpointError):
            checkpoint_store._write(make_checkpoint(checkpoint_store))


@pytest.mark.parametrize("kwargs", [{"save_interval": 0}, {"save_interval": -5},
                                    {"max_checkpoints": 0}])
def test_rejects_intervals_below_one(checkpoint_dir, kwargs):
    """Test that a zero or negative interval is refused up front."""
    with pytest.raises(ValueError):
        CheckpointStore(checkpoint_dir=checkpoint_dir, **kwargs)
