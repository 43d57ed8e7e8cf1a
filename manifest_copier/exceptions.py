"""
Exception classes for manifest copy operations.
"""


class CopierError(Exception):
    """Base exception for all manifest_copier errors."""

    pass


class ManifestError(CopierError):
    """The manifest could not be read or contains no entries."""

    pass


class ScanError(CopierError):
    """The source root is missing or is not a directory.

    Unreadable subdirectories never raise; they are logged and skipped.
    """

    pass


class CopyError(CopierError):
    """A byte copy failed after all permitted attempts.

    Only escapes the copy engine when the failure action is
    ``stop_operation``; otherwise the file is recorded as failed.
    """

    def __init__(self, entry: str, message: str):
        super().__init__(f"Copy failed for {entry}: {message}")
        self.entry = entry


class VerificationAbortError(CopierError):
    """Verification failed under the ``stop_operation`` policy.

    Aborts the entire run, not just the current file.
    """

    def __init__(self, entry: str, message: str):
        super().__init__(f"Verification failed for {entry}: {message}")
        self.entry = entry


class CheckpointError(CopierError):
    """A checkpoint could not be written."""

    pass


class ResumeError(CopierError):
    """A session cannot be resumed (missing, stale or already finished)."""

    pass
