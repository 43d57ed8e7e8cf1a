"""
Module for periodic progress sampling during a copy run.
"""
import logging
import threading
import time
from typing import Callable, Optional

from .models import BYTES_PER_MB, ProgressSnapshot, SessionCounters

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressSnapshot], None]

DEFAULT_INTERVAL = 0.2


class ProgressMonitor:
    """Samples session counters on a fixed interval in a background thread.

    Sampling is decoupled from per-file completion so that a wide worker
    pool does not flood the progress sink.
    """

    def __init__(self, counters: SessionCounters, callback: Optional[ProgressCallback],
                 interval: float = DEFAULT_INTERVAL):
        self._counters = counters
        self._callback = callback
        self._interval = interval
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        """Start the sampling thread. No-op without a callback."""
        if self._callback is None or self._thread is not None:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            name="progress-monitor",
            daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop sampling and emit one final snapshot."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
        self._emit()

    def _run(self) -> None:
        while not self._stop_event.wait(self._interval):
            self._emit()

    def _emit(self) -> None:
        if self._callback is None:
            return
        try:
            self._callback(self._counters.snapshot())
        except Exception as e:
            logger.error(f"Progress callback failed: {e}")

    def __enter__(self) -> "ProgressMonitor":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()


def format_duration(seconds: float) -> str:
    """Format seconds as HH:MM:SS (hours may exceed 24)."""
    seconds = max(0, int(seconds))
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def transfer_rate(snapshot: ProgressSnapshot, elapsed: float) -> float:
    """Average copy speed in MB/s over bytes copied by this run."""
    if elapsed <= 0:
        return 0.0
    return (snapshot.copied_bytes - snapshot.resumed_bytes) / BYTES_PER_MB / elapsed


def estimate_remaining(snapshot: ProgressSnapshot, elapsed: float) -> Optional[float]:
    """Seconds left at the current average rate, or None when unknown."""
    if snapshot.copied_bytes >= snapshot.total_bytes:
        return 0.0
    rate = transfer_rate(snapshot, elapsed)
    if rate <= 0:
        return None
    remaining_mb = (snapshot.total_bytes - snapshot.copied_bytes) / BYTES_PER_MB
    return remaining_mb / rate


def format_progress(snapshot: ProgressSnapshot, elapsed: float) -> str:
    """Render a snapshot as a single status line.

    Args:
        snapshot: Counters to render
        elapsed: Seconds since the run started

    Returns:
        Human readable progress line
    """
    eta = estimate_remaining(snapshot, elapsed)
    eta_text = format_duration(eta) if eta is not None else "Calculating..."
    return (
        f"{snapshot.percent:5.1f}% | found {snapshot.found} | skipped {snapshot.skipped} | "
        f"not found {snapshot.not_found} | "
        f"{snapshot.copied_bytes / BYTES_PER_MB:.2f} MB / {snapshot.total_bytes / BYTES_PER_MB:.2f} MB | "
        f"{transfer_rate(snapshot, elapsed):.2f} MB/s | ETA {eta_text}"
    )


class ProgressPrinter:
    """Progress callback that logs formatted snapshots."""

    def __init__(self, log: logging.Logger = logger):
        self._log = log
        self._started = time.monotonic()

    def __call__(self, snapshot: ProgressSnapshot) -> None:
        self._log.info(format_progress(snapshot, time.monotonic() - self._started))
