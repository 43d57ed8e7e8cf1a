"""
Module for persisting copy session checkpoints so runs can be resumed.
"""
import json
import logging
import os
import re
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from .exceptions import CheckpointError
from .models import Checkpoint, CopySettings

logger = logging.getLogger(__name__)

CHECKPOINT_EXTENSION = ".checkpoint"
MAX_CHECKPOINT_FILES = 10
CHECKPOINT_INTERVAL_FILES = 50

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def default_checkpoint_dir() -> Path:
    """Checkpoint folder under ``$MANIFEST_COPIER_HOME`` or the user's home."""
    home = os.environ.get("MANIFEST_COPIER_HOME")
    base = Path(home) if home else Path.home() / ".manifest_copier"
    return base / "checkpoints"


class CheckpointStore:
    """Saves, loads and prunes session checkpoints.

    Each session is one JSON file named after its (sanitized) session id.
    Writes go to a temporary file that is then renamed over the target, so
    a crash never leaves a half-written checkpoint behind.
    """

    def __init__(self, checkpoint_dir: Optional[Path] = None,
                 max_checkpoints: int = MAX_CHECKPOINT_FILES,
                 save_interval: int = CHECKPOINT_INTERVAL_FILES):
        """Initialize the checkpoint store.

        Args:
            checkpoint_dir: Directory holding checkpoint files
            max_checkpoints: Number of most recent checkpoints to keep
            save_interval: Successful files between periodic saves

        Raises:
            ValueError: If max_checkpoints or save_interval is below 1
        """
        if max_checkpoints < 1:
            raise ValueError(f"max_checkpoints must be at least 1, got {max_checkpoints}")
        if save_interval < 1:
            raise ValueError(f"checkpoint_interval must be at least 1, got {save_interval}")

        self.checkpoint_dir = Path(checkpoint_dir) if checkpoint_dir else default_checkpoint_dir()
        self.max_checkpoints = max_checkpoints
        self.save_interval = save_interval
        self._lock = threading.Lock()

        try:
            self.checkpoint_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Failed to create checkpoint directory {self.checkpoint_dir}: {e}")

    def _get_checkpoint_path(self, session_id: str) -> Path:
        safe_id = _UNSAFE_CHARS.sub("_", session_id)
        return self.checkpoint_dir / f"{safe_id}{CHECKPOINT_EXTENSION}"

    def save(self, checkpoint: Checkpoint) -> bool:
        """Persist a checkpoint atomically and prune old ones.

        Args:
            checkpoint: Checkpoint to save

        Returns:
            True if the checkpoint was written
        """
        if not checkpoint.is_structurally_valid:
            logger.warning(f"Invalid checkpoint data for session {checkpoint.session_id!r}, skipping save")
            return False

        try:
            self._write(checkpoint)
        except CheckpointError as e:
            logger.error(str(e))
            return False

        self._prune()
        logger.debug(
            f"Saved checkpoint {checkpoint.session_id}: {checkpoint.summary}"
        )
        return True

    def _write(self, checkpoint: Checkpoint) -> None:
        """Write via a temp file and rename; raises CheckpointError on failure."""
        path = self._get_checkpoint_path(checkpoint.session_id)
        temp_path = path.with_name(path.name + ".tmp")

        try:
            with self._lock:
                with open(temp_path, "w", encoding="utf-8") as f:
                    json.dump(checkpoint.to_dict(), f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(temp_path, path)
        except (OSError, TypeError, ValueError) as e:
            try:
                temp_path.unlink()
            except OSError:
                pass
            raise CheckpointError(
                f"Failed to save checkpoint {checkpoint.session_id}: {e}"
            ) from e

    def _read(self, path: Path) -> Optional[Checkpoint]:
        """Parse one checkpoint file; None if it is corrupt."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return Checkpoint.from_dict(data)
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Corrupt checkpoint file {path}: {e}")
            return None

    def load(self, session_id: str) -> Optional[Checkpoint]:
        """Load a checkpoint by session id.

        Corrupt, structurally invalid or stale checkpoints are treated as
        absent and deleted.

        Args:
            session_id: Session identifier

        Returns:
            Checkpoint if a usable one exists, None otherwise
        """
        if not session_id or not session_id.strip():
            return None

        path = self._get_checkpoint_path(session_id)
        if not path.exists():
            return None

        checkpoint = self._read(path)
        if checkpoint is None or not checkpoint.is_structurally_valid or checkpoint.is_stale():
            logger.info(f"Discarding unusable checkpoint {path.name}")
            self._discard(path)
            return None

        return checkpoint

    def list_resumable(self) -> List[Checkpoint]:
        """Return checkpoints that can be resumed, most recent first.

        Files that cannot be resumed are deleted.
        """
        sessions = []
        for path in self._checkpoint_files():
            checkpoint = self._read(path)
            if checkpoint is not None and checkpoint.is_valid_for_resume:
                sessions.append(checkpoint)
            else:
                self._discard(path)

        sessions.sort(key=lambda c: c.checkpoint_time, reverse=True)
        return sessions[:self.max_checkpoints]

    def delete(self, session_id: str) -> bool:
        """Delete a session's checkpoint.

        Args:
            session_id: Session identifier

        Returns:
            True if no checkpoint remains for the session
        """
        if not session_id or not session_id.strip():
            return False

        path = self._get_checkpoint_path(session_id)
        try:
            with self._lock:
                path.unlink()
            logger.info(f"Deleted checkpoint {session_id}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Failed to delete checkpoint {session_id}: {e}")
            return False
        return True

    def should_save(self, processed_count: int) -> bool:
        """True when ``processed_count`` hits the periodic save interval."""
        return processed_count > 0 and processed_count % self.save_interval == 0

    def create_checkpoint(self, session_id: str, start_time: datetime,
                          source_folder: str, dest_folder: str,
                          original_manifest: List[str], processed_files: List[str],
                          failed_files: List[str], skipped_files: List[str],
                          processed_bytes: int, total_bytes: int,
                          settings: Optional[CopySettings],
                          is_paste_mode: bool) -> Checkpoint:
        """Create a checkpoint from the current copy state.

        Lists are copied so later mutation of the caller's state does not
        leak into a checkpoint being written.
        """
        return Checkpoint(
            session_id=session_id,
            checkpoint_time=datetime.now(timezone.utc),
            start_time=start_time,
            source_folder=source_folder or "",
            dest_folder=dest_folder or "",
            original_manifest=list(original_manifest or []),
            processed_files=list(processed_files or []),
            failed_files=list(failed_files or []),
            skipped_files=list(skipped_files or []),
            processed_bytes=max(0, processed_bytes),
            total_bytes=max(0, total_bytes),
            settings=settings or CopySettings(),
            is_paste_mode=is_paste_mode,
        )

    def _checkpoint_files(self) -> List[Path]:
        if not self.checkpoint_dir.exists():
            return []
        return list(self.checkpoint_dir.glob(f"*{CHECKPOINT_EXTENSION}"))

    def _discard(self, path: Path) -> None:
        try:
            with self._lock:
                path.unlink()
        except OSError as e:
            logger.debug(f"Could not remove checkpoint {path}: {e}")

    def _prune(self) -> None:
        """Keep only the newest ``max_checkpoints`` checkpoint files."""
        try:
            files = sorted(self._checkpoint_files(),
                           key=lambda p: p.stat().st_mtime, reverse=True)
        except OSError as e:
            logger.debug(f"Checkpoint cleanup skipped: {e}")
            return

        for path in files[self.max_checkpoints:]:
            logger.debug(f"Pruning old checkpoint {path.name}")
            self._discard(path)
