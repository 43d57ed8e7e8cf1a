"""
Module for copying matched files with verification and retry logic.
"""
import logging
import os
import shutil
import threading
from dataclasses import dataclass
from typing import Optional, Set

from tenacity import (
    Retrying,
    RetryCallState,
    stop_after_attempt,
    wait_fixed,
    retry_if_exception_type,
)

from .exceptions import CopyError, VerificationAbortError
from .models import (
    BYTES_PER_MB,
    CopySettings,
    CopyTask,
    DuplicateHandling,
    FileOutcome,
    FileStatus,
    SessionCounters,
    VerificationFailureAction,
    VerificationMethod,
    VerificationResult,
)
from .scanner import SourceIndex, unique_destination
from .verifier import FileVerifier

logger = logging.getLogger(__name__)

RETRY_DELAY_SECONDS = 0.5


class VerificationMismatch(Exception):
    """A copy completed but did not pass verification."""

    def __init__(self, result: VerificationResult):
        super().__init__(result.error_message)
        self.result = result


@dataclass
class _CopyJob:
    task: CopyTask
    size_bytes: int = 0
    written: bool = False
    attempts: int = 0


class CopyEngine:
    """Runs the per-file state machine: resolve, filter, claim, copy, verify.

    One engine serves a whole run and may be called from many threads. The
    index is only read; destination claims are serialized by a lock.
    """

    def __init__(self, index: SourceIndex, dest_folder: str, settings: CopySettings,
                 counters: SessionCounters, verifier: Optional[FileVerifier] = None,
                 retry_delay: float = RETRY_DELAY_SECONDS,
                 cancel_event: Optional[threading.Event] = None):
        """Initialize the copy engine.

        Args:
            index: Source index built with the same matching settings
            dest_folder: Folder that receives the copies
            settings: Copy settings for this run
            counters: Shared counters updated by every outcome
            verifier: Verifier instance, shared across workers
            retry_delay: Seconds to wait between attempts
            cancel_event: Run-wide cancellation event; interrupts retry waits
        """
        self.index = index
        self.dest_folder = os.path.abspath(dest_folder)
        self.settings = settings
        self.counters = counters
        self.verifier = verifier or FileVerifier()
        self.retry_delay = retry_delay
        self.cancel_event = cancel_event or threading.Event()
        self._claims: Set[str] = set()
        self._claim_lock = threading.Lock()
        self._allowed_extensions = settings.allowed_extensions

    def process(self, entry: str) -> FileOutcome:
        """Process one manifest entry to a terminal state.

        Args:
            entry: Manifest entry exactly as provided by the user

        Returns:
            FileOutcome describing where the entry ended up

        Raises:
            VerificationAbortError: Verification failed under stop_operation
            CopyError: Copying failed under stop_operation
        """
        source_path = self.index.lookup(entry)
        if source_path is None:
            logger.info(f"NOT FOUND: {entry}")
            return self._finish(FileOutcome(entry=entry, status=FileStatus.NOT_FOUND))

        if self.settings.enable_filters and not self.passes_filters(source_path):
            logger.info(f"FILTERED: {entry}")
            return self._finish(FileOutcome(entry=entry, status=FileStatus.FILTERED,
                                            source_path=source_path))

        dest_path = self._claim_destination(source_path)
        if dest_path is None:
            logger.info(f"SKIP: {entry} (already exists)")
            return self._finish(FileOutcome(entry=entry, status=FileStatus.DUPLICATE_SKIPPED,
                                            source_path=source_path))

        task = CopyTask(
            manifest_entry=entry,
            source_path=source_path,
            dest_path=dest_path,
            duplicate_handling=self.settings.duplicate_handling,
            verification_method=self._verification_method,
        )
        try:
            outcome = self._copy_with_retries(_CopyJob(task=task))
        except Exception:
            self._release_destination(dest_path)
            raise

        if outcome.status != FileStatus.COPIED:
            self._release_destination(dest_path)
        return self._finish(outcome)

    @property
    def _verification_method(self) -> VerificationMethod:
        if not self.settings.enable_verification:
            return VerificationMethod.NONE
        return self.settings.verification_method

    def passes_filters(self, source_path: str) -> bool:
        """Check a source file against the extension and size filters.

        Metadata errors let the file through.

        Args:
            source_path: Path of the matched source file

        Returns:
            True if the file should be copied
        """
        try:
            extension = os.path.splitext(source_path)[1].lower()
            if self._allowed_extensions and extension not in self._allowed_extensions:
                return False

            size_mb = os.path.getsize(source_path) // BYTES_PER_MB
            return self.settings.min_size_mb <= size_mb <= self.settings.max_size_mb
        except OSError as e:
            logger.debug(f"Filter check failed for {source_path}, copying anyway: {e}")
            return True

    def _claim_destination(self, source_path: str) -> Optional[str]:
        """Pick and reserve the destination path, or None to skip.

        Claims made by other workers in this run count as existing files.
        """
        dest_path = os.path.join(self.dest_folder, os.path.basename(source_path))
        policy = self.settings.duplicate_handling

        with self._claim_lock:
            taken = dest_path in self._claims or os.path.exists(dest_path)
            if taken:
                if policy == DuplicateHandling.SKIP:
                    return None
                if policy == DuplicateHandling.RENAME:
                    dest_path = unique_destination(dest_path, self._claims)
            self._claims.add(dest_path)
        return dest_path

    def _release_destination(self, dest_path: str) -> None:
        with self._claim_lock:
            self._claims.discard(dest_path)

    def _copy_with_retries(self, job: _CopyJob) -> FileOutcome:
        task = job.task
        max_attempts = self.settings.max_attempts
        retrying = Retrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_fixed(self.retry_delay),
            retry=retry_if_exception_type((OSError, VerificationMismatch)),
            before_sleep=lambda state: self._before_retry(job, state),
            sleep=self._sleep,
            reraise=True,
        )

        try:
            for attempt in retrying:
                with attempt:
                    job.attempts = attempt.retry_state.attempt_number
                    self._copy_once(job)
                    self._verify(job)
        except VerificationMismatch as e:
            return self._on_verification_exhausted(job, e.result)
        except OSError as e:
            return self._on_copy_exhausted(job, e)

        if job.attempts > 1:
            logger.info(f"VERIFIED after retry {job.attempts}: {task.manifest_entry}")
        logger.info(f"COPIED: {task.manifest_entry} -> {os.path.basename(task.dest_path)}")
        return FileOutcome(
            entry=task.manifest_entry,
            status=FileStatus.COPIED,
            source_path=task.source_path,
            dest_path=task.dest_path,
            size_bytes=job.size_bytes,
            attempts=job.attempts,
        )

    def _copy_once(self, job: _CopyJob) -> None:
        task = job.task
        overwrite = task.duplicate_handling == DuplicateHandling.OVERWRITE
        if not overwrite and not job.written and os.path.exists(task.dest_path):
            raise FileExistsError(f"Destination already exists: {task.dest_path}")

        job.size_bytes = os.path.getsize(task.source_path)
        job.written = True
        shutil.copy2(task.source_path, task.dest_path)

    def _verify(self, job: _CopyJob) -> None:
        task = job.task
        if task.verification_method == VerificationMethod.NONE:
            return

        result = self.verifier.verify(task.source_path, task.dest_path, task.verification_method)
        if result.is_valid:
            self.counters.increment("verified")
            return

        self.counters.increment("verification_failed")
        logger.warning(
            f"VERIFICATION FAILED (attempt {job.attempts}/{self.settings.max_attempts}): "
            f"{task.manifest_entry} - {result.error_message}"
        )
        raise VerificationMismatch(result)

    def _before_retry(self, job: _CopyJob, state: RetryCallState) -> None:
        """Remove the bad copy and count the retry before the next attempt."""
        error = state.outcome.exception()
        if isinstance(error, VerificationMismatch):
            self.counters.increment("verification_retried")
        else:
            logger.error(
                f"COPY ERROR (attempt {state.attempt_number}/{self.settings.max_attempts}): "
                f"{job.task.manifest_entry} - {error}"
            )

        if job.written:
            try:
                os.remove(job.task.dest_path)
            except OSError:
                pass

        logger.info(
            f"Retrying copy: {job.task.manifest_entry} "
            f"(attempt {state.attempt_number + 1}/{self.settings.max_attempts})"
        )

    def _sleep(self, seconds: float) -> None:
        if seconds > 0:
            self.cancel_event.wait(seconds)

    def _on_verification_exhausted(self, job: _CopyJob,
                                   result: VerificationResult) -> FileOutcome:
        task = job.task
        action = self.settings.verification_failure_action
        if action == VerificationFailureAction.STOP_OPERATION:
            logger.error(f"STOPPING operation due to verification failure: {task.manifest_entry}")
            raise VerificationAbortError(task.manifest_entry, result.error_message)

        logger.warning(f"SKIPPING after {job.attempts} failed attempts: {task.manifest_entry}")
        return FileOutcome(
            entry=task.manifest_entry,
            status=FileStatus.VERIFICATION_SKIPPED,
            source_path=task.source_path,
            dest_path=task.dest_path,
            attempts=job.attempts,
            error=result.error_message,
        )

    def _on_copy_exhausted(self, job: _CopyJob, error: OSError) -> FileOutcome:
        task = job.task
        logger.error(
            f"COPY ERROR (attempt {job.attempts}/{self.settings.max_attempts}): "
            f"{task.manifest_entry} - {error}"
        )
        if self.settings.verification_failure_action == VerificationFailureAction.STOP_OPERATION:
            raise CopyError(task.manifest_entry, str(error)) from error

        return FileOutcome(
            entry=task.manifest_entry,
            status=FileStatus.FAILED,
            source_path=task.source_path,
            dest_path=task.dest_path,
            attempts=job.attempts,
            error=str(error),
        )

    def _finish(self, outcome: FileOutcome) -> FileOutcome:
        """Fold a terminal outcome into exactly one of found/skipped/not_found."""
        if outcome.status == FileStatus.COPIED:
            self.counters.add_found(outcome.size_bytes)
        elif outcome.status.is_skip:
            self.counters.increment("skipped")
        else:
            self.counters.increment("not_found")
        return outcome
