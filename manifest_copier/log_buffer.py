"""
In-memory log sink with bounded history.
"""
import logging
import threading
from datetime import datetime
from typing import List, Optional

DEFAULT_MAX_LINES = 1000
KEEP_FRACTION = 0.7
TRIM_MARKER = "========== LOG TRIMMED TO LIMIT MEMORY =========="


class LogBuffer(logging.Handler):
    """Logging handler that keeps recent, timestamped lines for display.

    When the retained history reaches ``max_lines`` the oldest 30% is dropped
    and a marker line is inserted in its place.
    """

    def __init__(self, max_lines: int = DEFAULT_MAX_LINES, level: int = logging.INFO):
        super().__init__(level)
        if max_lines < 2:
            raise ValueError("max_lines must be at least 2")
        self.max_lines = max_lines
        self._lines: List[str] = []
        self._buffer_lock = threading.Lock()
        self.setFormatter(logging.Formatter("%(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = self.format(record)
        except Exception:
            self.handleError(record)
            return
        self.append(message, datetime.fromtimestamp(record.created))

    def append(self, message: str, when: Optional[datetime] = None) -> None:
        """Add one line, prefixed with ``[HH:MM:SS]``."""
        when = when or datetime.now()
        line = f"[{when:%H:%M:%S}] {message}"
        with self._buffer_lock:
            if len(self._lines) >= self.max_lines:
                keep = int(self.max_lines * KEEP_FRACTION)
                self._lines = [TRIM_MARKER] + self._lines[-keep:]
            self._lines.append(line)

    @property
    def lines(self) -> List[str]:
        with self._buffer_lock:
            return list(self._lines)

    def text(self) -> str:
        return "\n".join(self.lines)

    def clear(self) -> None:
        with self._buffer_lock:
            self._lines.clear()
