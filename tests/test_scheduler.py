"""
Tests for sequential and parallel dispatch.
"""
import threading
import pytest
from unittest.mock import MagicMock

from manifest_copier.copier import CopyEngine
from manifest_copier.exceptions import VerificationAbortError
from manifest_copier.models import (
    CopySettings,
    SessionLedger,
    VerificationMethod,
    VerificationResult,
)
from manifest_copier.scanner import FileScanner
from manifest_copier.scheduler import CopyScheduler
from manifest_copier.verifier import FileVerifier

from conftest import make_file


@pytest.fixture
def many_files(source_dir):
    """Forty small files plus their manifest (with ten missing entries)."""
    for i in range(40):
        make_file(source_dir, f"batch{i % 4}/img_{i:03d}.jpg", b"x" * (i + 1))
    manifest = [f"img_{i:03d}.jpg" for i in range(50)]
    return source_dir, manifest


def make_scheduler(source_dir, dest_dir, counters, ledger, settings=None,
                   verifier=None, cancel_event=None, **kwargs):
    scanner = FileScanner()
    index = scanner.build_index(scanner.scan(source_dir))
    dest_dir.mkdir(exist_ok=True)
    engine = CopyEngine(index, str(dest_dir), settings or CopySettings(), counters,
                        verifier=verifier, retry_delay=0, cancel_event=cancel_event)
    return CopyScheduler(engine, ledger, cancel_event=cancel_event, **kwargs)


@pytest.mark.parametrize("parallel", [False, True])
def test_every_entry_reaches_one_terminal_state(many_files, dest_dir, counters, parallel):
    """Test found + skipped + not_found == manifest size in both modes."""
    source_dir, manifest = many_files
    ledger = SessionLedger()
    scheduler = make_scheduler(source_dir, dest_dir, counters, ledger)

    scheduler.run(manifest, parallel=parallel, max_workers=8)

    snapshot = counters.snapshot()
    assert snapshot.found == 40
    assert snapshot.not_found == 10
    assert snapshot.processed == len(manifest)
    assert snapshot.copied_bytes == sum(range(1, 41))
    assert sorted(ledger.processed) == manifest[:40]
    assert sorted(ledger.not_found) == manifest[40:]


def test_sequential_mode_keeps_manifest_order(many_files, dest_dir, counters):
    """Test that sequential mode records outcomes in manifest order."""
    source_dir, manifest = many_files
    seen = []
    scheduler = make_scheduler(source_dir, dest_dir, counters, SessionLedger(),
                               on_outcome=lambda outcome: seen.append(outcome.entry))
    scheduler.run(manifest[:10], parallel=False)
    assert seen == manifest[:10]


def test_parallel_duplicates_all_land_under_rename(source_dir, dest_dir, counters):
    """Test that repeated entries in parallel get distinct renamed copies."""
    make_file(source_dir, "same.jpg", b"payload")
    ledger = SessionLedger()
    scheduler = make_scheduler(source_dir, dest_dir, counters, ledger,
                               settings=CopySettings(duplicate_handling="rename"))

    scheduler.run(["same.jpg"] * 6, parallel=True, max_workers=6)

    names = sorted(p.name for p in dest_dir.iterdir())
    assert names == ["same.jpg", "same_1.jpg", "same_2.jpg", "same_3.jpg",
                     "same_4.jpg", "same_5.jpg"]
    assert counters.found == 6


def test_checkpoint_callback_fires_on_interval(many_files, dest_dir, counters):
    """Test that periodic checkpoints follow the count of copied files."""
    source_dir, manifest = many_files
    on_checkpoint = MagicMock()
    scheduler = make_scheduler(source_dir, dest_dir, counters, SessionLedger(),
                               checkpoint_interval=10, on_checkpoint=on_checkpoint)

    scheduler.run(manifest, parallel=False)
    assert on_checkpoint.call_count == 4


@pytest.mark.parametrize("parallel", [False, True])
def test_cancelled_run_starts_nothing(many_files, dest_dir, counters, parallel):
    """Test that a pre-set cancel event dispatches no entries."""
    source_dir, manifest = many_files
    cancel_event = threading.Event()
    cancel_event.set()
    scheduler = make_scheduler(source_dir, dest_dir, counters, SessionLedger(),
                               cancel_event=cancel_event)

    scheduler.run(manifest, parallel=parallel)
    assert counters.snapshot().processed == 0
    assert not dest_dir.exists() or not any(dest_dir.iterdir())


def test_cancel_mid_run_stops_dispatch(many_files, dest_dir, counters):
    """Test that cancelling after a few files leaves the rest untouched."""
    source_dir, manifest = many_files
    cancel_event = threading.Event()
    ledger = SessionLedger()

    def cancel_after_five(outcome):
        if len(ledger.processed) >= 5:
            cancel_event.set()

    scheduler = make_scheduler(source_dir, dest_dir, counters, ledger,
                               cancel_event=cancel_event, on_outcome=cancel_after_five)
    scheduler.run(manifest, parallel=False)

    assert ledger.processed == manifest[:5]
    assert counters.snapshot().processed == 5


@pytest.mark.parametrize("parallel", [False, True])
def test_stop_operation_aborts_run(many_files, dest_dir, counters, parallel):
    """Test that an abort from one file stops the run and propagates."""
    source_dir, manifest = many_files
    verifier = MagicMock(spec=FileVerifier)
    verifier.verify.return_value = VerificationResult(
        is_valid=False, method=VerificationMethod.STANDARD, error_message="Size mismatch")
    settings = CopySettings(verification_failure_action="stop_operation")
    scheduler = make_scheduler(source_dir, dest_dir, counters, SessionLedger(),
                               settings=settings, verifier=verifier)

    with pytest.raises(VerificationAbortError):
        scheduler.run(manifest, parallel=parallel, max_workers=2)
    assert counters.found == 0
    assert counters.snapshot().processed < len(manifest)


def test_zero_checkpoint_interval_is_rejected(many_files, dest_dir, counters):
    """Test that a zero interval fails at construction, not mid-run."""
    source_dir, _ = many_files
    with pytest.raises(ValueError):
        make_scheduler(source_dir, dest_dir, counters, SessionLedger(), checkpoint_interval=0)
