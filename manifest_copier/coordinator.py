"""
Module for coordinating copy sessions with checkpointing and resumability.
"""
import logging
import os
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Union

from .copier import CopyEngine, RETRY_DELAY_SECONDS
from .exceptions import CopierError, ResumeError
from .log_buffer import LogBuffer
from .manifest import export_entries
from .models import (
    Checkpoint,
    CopyRequest,
    CopySettings,
    RunResult,
    RunStatus,
    SessionCounters,
    SessionLedger,
)
from .monitor import DEFAULT_INTERVAL, ProgressCallback, ProgressMonitor, format_duration
from .scanner import FileScanner, SourceIndex
from .scheduler import CopyScheduler
from .tracker import CheckpointStore
from .verifier import FileVerifier

logger = logging.getLogger(__name__)


class CopyCoordinator:
    """Runs copy sessions end to end and owns their checkpoint lifecycle.

    A completed session deletes its checkpoint. A cancelled or failed one
    leaves a checkpoint behind so that :meth:`resume` can pick it up.
    """

    def __init__(self, store: Optional[CheckpointStore] = None,
                 verifier: Optional[FileVerifier] = None,
                 retry_delay: float = RETRY_DELAY_SECONDS,
                 progress_callback: Optional[ProgressCallback] = None,
                 progress_interval: float = DEFAULT_INTERVAL,
                 log_buffer: Optional[LogBuffer] = None):
        """Initialize the copy coordinator.

        Args:
            store: Checkpoint store; defaults to the per-user checkpoint folder
            verifier: Verifier shared by all workers
            retry_delay: Seconds between copy attempts
            progress_callback: Receives progress snapshots during a run
            progress_interval: Seconds between progress snapshots
            log_buffer: Receives this package's log lines while a run is active
        """
        self.scanner = FileScanner()
        self.store = store or CheckpointStore()
        self.verifier = verifier or FileVerifier()
        self.retry_delay = retry_delay
        self.progress_callback = progress_callback
        self.progress_interval = progress_interval
        self.log_buffer = log_buffer or LogBuffer()
        self.last_result: Optional[RunResult] = None
        self._cancel_event = threading.Event()
        self._lock = threading.Lock()

    def start(self, request: CopyRequest) -> RunResult:
        """Start a new copy session.

        Args:
            request: Copy request details

        Returns:
            RunResult for the session
        """
        logger.info("=" * 40)
        logger.info(f"Starting new copy session: {request.session_id}")
        logger.info(f"Source: {request.source_folder}")
        logger.info(f"Destination: {request.dest_folder}")
        logger.info(f"Total entries in manifest: {len(request.manifest)}")
        logger.info("=" * 40)

        return self._run_session(
            session_id=request.session_id,
            start_time=datetime.now(timezone.utc),
            source_folder=request.source_folder,
            dest_folder=request.dest_folder,
            manifest=list(request.manifest),
            entries=list(request.manifest),
            settings=request.settings,
            is_paste_mode=request.is_paste_mode,
            ledger=SessionLedger(),
        )

    def resume(self, session_id: str) -> RunResult:
        """Resume an interrupted session from its checkpoint.

        Only the entries the checkpoint still lists as remaining are
        processed, under the original session id and settings. Counters and
        byte totals continue from the checkpoint, so the result covers the
        whole manifest.

        Args:
            session_id: Session to resume

        Returns:
            RunResult for the resumed run

        Raises:
            ResumeError: If there is no resumable checkpoint for the session
        """
        checkpoint = self.store.load(session_id)
        if checkpoint is None:
            raise ResumeError(f"No checkpoint found for session {session_id}")
        if not checkpoint.is_valid_for_resume:
            raise ResumeError(f"Session {session_id} has nothing left to resume")

        source_folder = Path(checkpoint.source_folder)
        if not source_folder.is_dir():
            raise ResumeError(f"Source folder no longer exists: {source_folder}")

        remaining = checkpoint.remaining_files
        logger.info("=" * 40)
        logger.info(f"Resuming session {session_id}: {checkpoint.summary}")
        logger.info(f"Processing {len(remaining)} remaining files")
        logger.info("=" * 40)

        return self._run_session(
            session_id=checkpoint.session_id,
            start_time=checkpoint.start_time,
            source_folder=source_folder,
            dest_folder=Path(checkpoint.dest_folder),
            manifest=checkpoint.original_manifest,
            entries=remaining,
            settings=checkpoint.settings,
            is_paste_mode=checkpoint.is_paste_mode,
            ledger=SessionLedger(
                processed=checkpoint.processed_files,
                skipped=checkpoint.skipped_files,
                failed=checkpoint.failed_files,
            ),
            previous_bytes=checkpoint.processed_bytes,
            session_total_bytes=checkpoint.total_bytes,
        )

    def cancel(self) -> None:
        """Request cancellation of the active run.

        Files already being copied finish; no new files are started.
        """
        if not self._cancel_event.is_set():
            logger.info("Cancellation requested")
        self._cancel_event.set()

    def restart(self, session_id: str) -> bool:
        """Discard a session's checkpoint so it starts from scratch next time."""
        return self.store.delete(session_id)

    def list_sessions(self) -> List[Checkpoint]:
        """Resumable sessions, most recent first."""
        return self.store.list_resumable()

    def export_not_found(self, path: Union[str, Path]) -> int:
        """Write the last run's unmatched entries to a text file.

        Args:
            path: Output file

        Returns:
            Number of entries written
        """
        entries = self.last_result.not_found if self.last_result else []
        return export_entries(entries, path)

    def _run_session(self, session_id: str, start_time: datetime,
                     source_folder: Path, dest_folder: Path, manifest: List[str],
                     entries: List[str], settings: CopySettings, is_paste_mode: bool,
                     ledger: SessionLedger, previous_bytes: int = 0,
                     session_total_bytes: int = 0) -> RunResult:
        package_logger = logging.getLogger(__package__)
        with self._lock:
            package_logger.addHandler(self.log_buffer)
            try:
                return self._run_locked(session_id, start_time, source_folder, dest_folder,
                                        manifest, entries, settings, is_paste_mode, ledger,
                                        previous_bytes, session_total_bytes)
            finally:
                package_logger.removeHandler(self.log_buffer)

    def _run_locked(self, session_id: str, start_time: datetime,
                    source_folder: Path, dest_folder: Path, manifest: List[str],
                    entries: List[str], settings: CopySettings, is_paste_mode: bool,
                    ledger: SessionLedger, previous_bytes: int,
                    session_total_bytes: int) -> RunResult:
        self._cancel_event.clear()
        started = time.monotonic()
        counters = SessionCounters(total_files=len(manifest), total_bytes=session_total_bytes)
        counters.restore(
            found=len(ledger.processed),
            skipped=len(ledger.skipped),
            not_found=len(ledger.failed),
            copied_bytes=previous_bytes,
        )

        def build_checkpoint() -> Checkpoint:
            snapshot = counters.snapshot()
            return self.store.create_checkpoint(
                session_id=session_id,
                start_time=start_time,
                source_folder=str(source_folder),
                dest_folder=str(dest_folder),
                original_manifest=manifest,
                processed_files=ledger.processed,
                failed_files=ledger.failed,
                skipped_files=ledger.skipped,
                processed_bytes=snapshot.copied_bytes,
                total_bytes=snapshot.total_bytes,
                settings=settings,
                is_paste_mode=is_paste_mode,
            )

        def save_checkpoint() -> None:
            if self.store.save(build_checkpoint()):
                logger.info(f"Checkpoint saved: {len(ledger.processed)} processed")

        status = RunStatus.COMPLETED
        error: Optional[str] = None
        try:
            index = self._build_index(source_folder, settings)
            dest_folder.mkdir(parents=True, exist_ok=True)
            if not self._cancel_event.is_set():
                # A checkpoint saved while scanning carries no byte total yet
                total_bytes = counters.total_bytes or self._total_bytes(index, manifest)
                counters.set_totals(len(manifest), total_bytes)
                self._schedule(index, dest_folder, settings, counters, ledger,
                               entries, save_checkpoint)
        except (CopierError, OSError) as e:
            status = RunStatus.FAILED
            error = str(e)
            logger.error(f"Error: {e}")
        except Exception:
            save_checkpoint()
            raise

        checkpoint = build_checkpoint()
        if status == RunStatus.COMPLETED and checkpoint.remaining_files:
            status = RunStatus.CANCELLED
            logger.info("Copy cancelled by user")

        if status == RunStatus.COMPLETED:
            self.store.delete(session_id)
        elif self.store.save(checkpoint):
            logger.info(f"Checkpoint kept for resume: {session_id} ({checkpoint.summary})")

        elapsed = time.monotonic() - started
        result = RunResult(
            session_id=session_id,
            status=status,
            snapshot=counters.snapshot(),
            not_found=ledger.not_found,
            failed=ledger.failed,
            elapsed=elapsed,
            error=error,
        )
        self.last_result = result
        self._log_summary(result)
        return result

    def _build_index(self, source_folder: Path, settings: CopySettings) -> SourceIndex:
        logger.info("Scanning source folder...")
        paths = self.scanner.scan(source_folder, self._cancel_event)
        return self.scanner.build_index(
            paths,
            ignore_extension=settings.ignore_extension,
            case_insensitive=settings.case_insensitive,
        )

    def _total_bytes(self, index: SourceIndex, entries: List[str]) -> int:
        total = 0
        for entry in entries:
            source_path = index.lookup(entry)
            if source_path is None:
                continue
            try:
                total += os.path.getsize(source_path)
            except OSError:
                pass
        return total

    def _schedule(self, index: SourceIndex, dest_folder: Path, settings: CopySettings,
                  counters: SessionCounters, ledger: SessionLedger, entries: List[str],
                  save_checkpoint) -> None:
        engine = CopyEngine(
            index=index,
            dest_folder=str(dest_folder),
            settings=settings,
            counters=counters,
            verifier=self.verifier,
            retry_delay=self.retry_delay,
            cancel_event=self._cancel_event,
        )
        scheduler = CopyScheduler(
            engine=engine,
            ledger=ledger,
            cancel_event=self._cancel_event,
            checkpoint_interval=self.store.save_interval,
            on_checkpoint=save_checkpoint,
        )
        with ProgressMonitor(counters, self.progress_callback, self.progress_interval):
            scheduler.run(
                entries,
                parallel=settings.enable_parallel,
                max_workers=settings.parallel_threads,
            )

    def _log_summary(self, result: RunResult) -> None:
        snapshot = result.snapshot
        logger.info("=" * 40)
        logger.info(
            f"Session {result.session_id} {result.status.value} in {format_duration(result.elapsed)}: "
            f"{snapshot.found} copied, {snapshot.skipped} skipped, {snapshot.not_found} not found"
        )
        if snapshot.verified or snapshot.verification_failed:
            logger.info(
                f"Verification: {snapshot.verified} verified, "
                f"{snapshot.verification_failed} failed, {snapshot.verification_retried} retried"
            )
        logger.info("=" * 40)
