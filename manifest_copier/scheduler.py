"""
Module for running the copy engine over a manifest, sequentially or in parallel.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional

from .copier import CopyEngine
from .exceptions import CopierError
from .models import FileOutcome, FileStatus, SessionLedger

logger = logging.getLogger(__name__)

CheckpointCallback = Callable[[], None]

SLOT_POLL_SECONDS = 0.1


class CopyScheduler:
    """Dispatches manifest entries to a copy engine.

    Sequential mode processes entries in manifest order. Parallel mode runs
    at most ``max_workers`` entries at once; a slot is acquired before each
    dispatch and released when the entry finishes, however it finishes.
    Both modes run the identical per-file state machine.
    """

    def __init__(self, engine: CopyEngine, ledger: SessionLedger,
                 cancel_event: Optional[threading.Event] = None,
                 checkpoint_interval: int = 50,
                 on_checkpoint: Optional[CheckpointCallback] = None,
                 on_outcome: Optional[Callable[[FileOutcome], None]] = None):
        """Initialize the scheduler.

        Args:
            engine: Copy engine shared by all workers
            ledger: Thread-safe record of processed/skipped/failed entries
            cancel_event: Run-wide cancellation event
            checkpoint_interval: Successful files between checkpoint callbacks
            on_checkpoint: Called when a periodic checkpoint is due
            on_outcome: Called with every terminal outcome
        """
        if checkpoint_interval < 1:
            raise ValueError(f"checkpoint_interval must be at least 1, got {checkpoint_interval}")
        self.engine = engine
        self.ledger = ledger
        self.cancel_event = cancel_event or engine.cancel_event
        self.checkpoint_interval = checkpoint_interval
        self._on_checkpoint = on_checkpoint
        self._on_outcome = on_outcome
        self._fatal_error: Optional[BaseException] = None
        self._error_lock = threading.Lock()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def run(self, entries: List[str], parallel: bool = False, max_workers: int = 4) -> None:
        """Process every entry, stopping early on cancellation or a fatal error.

        Args:
            entries: Manifest entries to process
            parallel: Use a bounded worker pool
            max_workers: Pool width in parallel mode

        Raises:
            CopierError: A worker hit a run-aborting failure
        """
        if parallel and len(entries) > 1:
            logger.info(f"Mode: Parallel ({max_workers} threads)")
            self._run_parallel(entries, max_workers)
        else:
            logger.info("Mode: Sequential")
            self._run_sequential(entries)

        if self._fatal_error is not None:
            raise self._fatal_error

    def _run_sequential(self, entries: List[str]) -> None:
        for entry in entries:
            if self.cancelled:
                break
            self._process_entry(entry)
            if self._fatal_error is not None:
                break

    def _should_stop(self) -> bool:
        return self.cancelled or self._fatal_error is not None

    def _run_parallel(self, entries: List[str], max_workers: int) -> None:
        slots = threading.BoundedSemaphore(max_workers)

        with ThreadPoolExecutor(max_workers=max_workers,
                                thread_name_prefix="copy-worker") as executor:
            for entry in entries:
                if not self._acquire_slot(slots):
                    break
                executor.submit(self._run_slot, slots, entry)

    def _acquire_slot(self, slots: threading.BoundedSemaphore) -> bool:
        """Block until a worker slot is free; False if the run is stopping."""
        # Short timeouts so cancellation is noticed while the pool is saturated.
        while not self._should_stop():
            if slots.acquire(timeout=SLOT_POLL_SECONDS):
                return True
        return False

    def _run_slot(self, slots: threading.BoundedSemaphore, entry: str) -> None:
        try:
            self._process_entry(entry)
        except Exception as e:
            self._record_fatal(e)
        finally:
            slots.release()

    def _process_entry(self, entry: str) -> Optional[FileOutcome]:
        if self._should_stop():
            return None

        try:
            outcome = self.engine.process(entry)
        except CopierError as e:
            self._record_fatal(e)
            return None

        processed_count = self.ledger.record(outcome)
        if self._on_outcome is not None:
            self._on_outcome(outcome)

        if (outcome.status == FileStatus.COPIED and self._on_checkpoint is not None
                and processed_count % self.checkpoint_interval == 0):
            self._on_checkpoint()
        return outcome

    def _record_fatal(self, error: BaseException) -> None:
        with self._error_lock:
            if self._fatal_error is None:
                logger.error(f"Stopping run: {error}")
                self._fatal_error = error
