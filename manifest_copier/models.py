"""
Module containing data models for the copy service.
"""
import re
import threading
import uuid
from dataclasses import dataclass, field, asdict, fields
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import List, Optional, Dict, Any, Set

MAX_CHECKPOINT_AGE = timedelta(days=7)
MIN_THREADS = 1
MAX_THREADS = 16
BYTES_PER_MB = 1024 * 1024

_EXTENSION_SEPARATORS = re.compile(r"[,; ]+")


class DuplicateHandling(str, Enum):
    """What to do when the destination file already exists."""
    SKIP = "skip"
    RENAME = "rename"
    OVERWRITE = "overwrite"


class VerificationMethod(str, Enum):
    """Post-copy integrity checks, in increasing cost and strictness."""
    NONE = "none"
    SIZE_ONLY = "size_only"
    STANDARD = "standard"
    FULL_HASH = "full_hash"


class VerificationFailureAction(str, Enum):
    """Policy applied when a copied file fails verification."""
    RETRY_AUTO = "retry_auto"
    SKIP_AND_LOG = "skip_and_log"
    STOP_OPERATION = "stop_operation"


class FileStatus(str, Enum):
    """Terminal state of one manifest entry."""
    COPIED = "copied"
    NOT_FOUND = "not_found"
    FILTERED = "filtered"
    DUPLICATE_SKIPPED = "duplicate_skipped"
    VERIFICATION_SKIPPED = "verification_skipped"
    FAILED = "failed"

    @property
    def is_skip(self) -> bool:
        return self in (FileStatus.FILTERED, FileStatus.DUPLICATE_SKIPPED,
                        FileStatus.VERIFICATION_SKIPPED)


class RunStatus(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_extension_filter(text: str) -> Set[str]:
    """Parse a comma/semicolon/space separated extension list.

    Args:
        text: Raw filter text, e.g. ``"jpg; .NEF, cr2"``

    Returns:
        Set of lower-cased extensions, each with a leading dot
    """
    extensions = set()
    for token in _EXTENSION_SEPARATORS.split(text or ""):
        token = token.strip().lower()
        if not token:
            continue
        extensions.add(token if token.startswith(".") else f".{token}")
    return extensions


@dataclass
class CopySettings:
    """Options controlling matching, filtering, copying and verification."""
    ignore_extension: bool = False
    case_insensitive: bool = False
    duplicate_handling: DuplicateHandling = DuplicateHandling.SKIP
    enable_parallel: bool = True
    parallel_threads: int = 4
    enable_filters: bool = False
    extension_filter: str = ""
    min_size_mb: int = 0
    max_size_mb: int = 1000
    enable_verification: bool = True
    verification_method: VerificationMethod = VerificationMethod.STANDARD
    verification_failure_action: VerificationFailureAction = VerificationFailureAction.RETRY_AUTO

    def __post_init__(self):
        """Coerce enum names and validate ranges."""
        self.duplicate_handling = DuplicateHandling(self.duplicate_handling)
        self.verification_method = VerificationMethod(self.verification_method)
        self.verification_failure_action = VerificationFailureAction(
            self.verification_failure_action
        )
        self.parallel_threads = int(self.parallel_threads)
        self.min_size_mb = int(self.min_size_mb)
        self.max_size_mb = int(self.max_size_mb)

        if not MIN_THREADS <= self.parallel_threads <= MAX_THREADS:
            raise ValueError(
                f"parallel_threads must be between {MIN_THREADS} and {MAX_THREADS}, "
                f"got {self.parallel_threads}"
            )
        if self.min_size_mb < 0 or self.max_size_mb < 0:
            raise ValueError("Size limits cannot be negative")

    @property
    def allowed_extensions(self) -> Set[str]:
        return parse_extension_filter(self.extension_filter)

    @property
    def max_attempts(self) -> int:
        """Total copy attempts per file; only retry_auto retries."""
        if self.verification_failure_action == VerificationFailureAction.RETRY_AUTO:
            return 3
        return 1

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, Enum):
                data[key] = value.value
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CopySettings":
        """Build settings from a dict, ignoring unknown keys.

        Args:
            data: Mapping of setting names to values

        Returns:
            CopySettings instance
        """
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in known})


@dataclass
class CopyRequest:
    """Represents a request to copy the files named in a manifest."""
    source_folder: Path
    dest_folder: Path
    manifest: List[str]
    settings: CopySettings = field(default_factory=CopySettings)
    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    is_paste_mode: bool = False

    def __post_init__(self):
        """Validate the copy request."""
        self.source_folder = Path(self.source_folder)
        self.dest_folder = Path(self.dest_folder)
        if not self.session_id or not self.session_id.strip():
            raise ValueError("session_id cannot be empty")
        if not self.source_folder.exists():
            raise ValueError(f"Source folder {self.source_folder} does not exist")
        if not self.source_folder.is_dir():
            raise ValueError(f"{self.source_folder} is not a directory")
        if not self.manifest:
            raise ValueError("manifest cannot be empty")


@dataclass
class CopyTask:
    """A single unit of work handed to the copy engine. Never persisted."""
    manifest_entry: str
    source_path: Optional[str]
    dest_path: Optional[str]
    duplicate_handling: DuplicateHandling
    verification_method: VerificationMethod


@dataclass
class VerificationResult:
    """Outcome of one verification attempt."""
    is_valid: bool
    method: VerificationMethod
    source_size: int = 0
    dest_size: int = 0
    source_modified: Optional[float] = None
    dest_modified: Optional[float] = None
    source_hash: Optional[str] = None
    dest_hash: Optional[str] = None
    error_message: str = ""


@dataclass
class FileOutcome:
    """Terminal result of processing one manifest entry."""
    entry: str
    status: FileStatus
    source_path: Optional[str] = None
    dest_path: Optional[str] = None
    size_bytes: int = 0
    attempts: int = 0
    error: Optional[str] = None


@dataclass(frozen=True)
class ProgressSnapshot:
    """Point-in-time copy of the session counters."""
    found: int
    skipped: int
    not_found: int
    verified: int
    verification_failed: int
    verification_retried: int
    copied_bytes: int
    total_bytes: int
    total_files: int
    resumed_bytes: int = 0

    @property
    def processed(self) -> int:
        return self.found + self.skipped + self.not_found

    @property
    def percent(self) -> float:
        if self.total_files <= 0:
            return 0.0
        return min(100.0, max(0.0, self.processed * 100.0 / self.total_files))


class SessionCounters:
    """Shared counters for one run.

    Every update goes through a method of this class; the internal lock makes
    each increment atomic so workers never coordinate on their own.
    Values only ever grow.
    """

    def __init__(self, total_files: int = 0, total_bytes: int = 0):
        self._lock = threading.Lock()
        self._total_files = total_files
        self._values = {
            "found": 0,
            "skipped": 0,
            "not_found": 0,
            "verified": 0,
            "verification_failed": 0,
            "verification_retried": 0,
            "copied_bytes": 0,
            "total_bytes": total_bytes,
        }
        self._resumed_bytes = 0

    def increment(self, name: str, amount: int = 1) -> int:
        """Add to a counter and return its new value."""
        if amount < 0:
            raise ValueError("Counters cannot be decremented")
        with self._lock:
            self._values[name] += amount
            return self._values[name]

    def add_found(self, size_bytes: int) -> int:
        """Record a successful copy; returns the new found count."""
        with self._lock:
            self._values["copied_bytes"] += size_bytes
            self._values["found"] += 1
            return self._values["found"]

    def restore(self, found: int, skipped: int, not_found: int, copied_bytes: int) -> None:
        """Carry a checkpoint's progress into a resumed run."""
        if min(found, skipped, not_found, copied_bytes) < 0:
            raise ValueError("Counters cannot be decremented")
        with self._lock:
            self._values["found"] += found
            self._values["skipped"] += skipped
            self._values["not_found"] += not_found
            self._values["copied_bytes"] += copied_bytes
            self._resumed_bytes += copied_bytes

    def set_totals(self, total_files: int, total_bytes: int) -> None:
        with self._lock:
            self._total_files = total_files
            self._values["total_bytes"] = total_bytes

    def __getattr__(self, name: str) -> int:
        values = self.__dict__.get("_values")
        if values is not None and name in values:
            with self._lock:
                return values[name]
        raise AttributeError(name)

    def snapshot(self) -> ProgressSnapshot:
        with self._lock:
            return ProgressSnapshot(total_files=self._total_files,
                                    resumed_bytes=self._resumed_bytes, **self._values)


class SessionLedger:
    """Thread-safe record of which manifest entries ended where."""

    def __init__(self, processed: Optional[List[str]] = None,
                 skipped: Optional[List[str]] = None,
                 failed: Optional[List[str]] = None):
        self._lock = threading.Lock()
        self._processed: List[str] = list(processed or [])
        self._skipped: List[str] = list(skipped or [])
        self._failed: List[str] = list(failed or [])
        self._not_found: List[str] = []

    def record(self, outcome: FileOutcome) -> int:
        """Record an outcome; returns the number of processed entries."""
        with self._lock:
            if outcome.status == FileStatus.COPIED:
                self._processed.append(outcome.entry)
            elif outcome.status.is_skip:
                self._skipped.append(outcome.entry)
            else:
                self._failed.append(outcome.entry)
                self._not_found.append(outcome.entry)
            return len(self._processed)

    @property
    def processed(self) -> List[str]:
        with self._lock:
            return list(self._processed)

    @property
    def skipped(self) -> List[str]:
        with self._lock:
            return list(self._skipped)

    @property
    def failed(self) -> List[str]:
        with self._lock:
            return list(self._failed)

    @property
    def not_found(self) -> List[str]:
        """Entries from this run that were not copied (missing or failed)."""
        with self._lock:
            return list(self._not_found)


@dataclass
class Checkpoint:
    """Durable snapshot of a session, sufficient to resume it."""
    session_id: str
    source_folder: str
    dest_folder: str
    original_manifest: List[str]
    processed_files: List[str] = field(default_factory=list)
    skipped_files: List[str] = field(default_factory=list)
    failed_files: List[str] = field(default_factory=list)
    processed_bytes: int = 0
    total_bytes: int = 0
    settings: CopySettings = field(default_factory=CopySettings)
    is_paste_mode: bool = False
    checkpoint_time: datetime = field(default_factory=_utcnow)
    start_time: datetime = field(default_factory=_utcnow)

    @property
    def remaining_files(self) -> List[str]:
        """Manifest entries not yet processed, skipped or failed.

        Always derived from the stored lists; never cached.
        """
        done = set(self.processed_files) | set(self.skipped_files) | set(self.failed_files)
        return [entry for entry in self.original_manifest if entry not in done]

    @property
    def is_structurally_valid(self) -> bool:
        return bool(
            self.session_id.strip()
            and self.source_folder.strip()
            and self.dest_folder.strip()
            and self.original_manifest
        )

    def is_stale(self, now: Optional[datetime] = None) -> bool:
        now = now or _utcnow()
        return now - self.checkpoint_time > MAX_CHECKPOINT_AGE

    @property
    def is_valid_for_resume(self) -> bool:
        if not self.is_structurally_valid or self.is_stale():
            return False
        return len(self.remaining_files) > 0

    @property
    def progress_percentage(self) -> float:
        if not self.original_manifest:
            return 0.0
        done = len(self.processed_files) + len(self.skipped_files) + len(self.failed_files)
        return min(100.0, max(0.0, done * 100.0 / len(self.original_manifest)))

    @property
    def summary(self) -> str:
        return (
            f"{len(self.processed_files)}/{len(self.original_manifest)} files completed "
            f"({self.progress_percentage:.1f}%), {len(self.remaining_files)} remaining"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "checkpoint_time": self.checkpoint_time.isoformat(),
            "start_time": self.start_time.isoformat(),
            "source_folder": self.source_folder,
            "dest_folder": self.dest_folder,
            "original_manifest": list(self.original_manifest),
            "processed_files": list(self.processed_files),
            "skipped_files": list(self.skipped_files),
            "failed_files": list(self.failed_files),
            "processed_bytes": self.processed_bytes,
            "total_bytes": self.total_bytes,
            "settings": self.settings.to_dict(),
            "is_paste_mode": self.is_paste_mode,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Checkpoint":
        """Create a checkpoint from its serialized form.

        Optional fields missing from ``data`` fall back to their defaults.

        Args:
            data: Dictionary produced by :meth:`to_dict`

        Returns:
            Checkpoint instance

        Raises:
            KeyError: If a required field is missing
            ValueError: If a timestamp or setting is malformed
        """
        checkpoint = cls(
            session_id=data["session_id"],
            source_folder=data["source_folder"],
            dest_folder=data["dest_folder"],
            original_manifest=list(data["original_manifest"]),
            processed_files=list(data.get("processed_files") or []),
            skipped_files=list(data.get("skipped_files") or []),
            failed_files=list(data.get("failed_files") or []),
            processed_bytes=max(0, int(data.get("processed_bytes", 0))),
            total_bytes=max(0, int(data.get("total_bytes", 0))),
            settings=CopySettings.from_dict(data.get("settings")),
            is_paste_mode=bool(data.get("is_paste_mode", False)),
        )
        if data.get("checkpoint_time"):
            checkpoint.checkpoint_time = _parse_time(data["checkpoint_time"])
        if data.get("start_time"):
            checkpoint.start_time = _parse_time(data["start_time"])
        return checkpoint


def _parse_time(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class RunResult:
    """Final state of one run."""
    session_id: str
    status: RunStatus
    snapshot: ProgressSnapshot
    not_found: List[str]
    failed: List[str]
    elapsed: float
    error: Optional[str] = None
