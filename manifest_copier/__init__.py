from .coordinator import CopyCoordinator
from .copier import CopyEngine
from .models import (
    Checkpoint,
    CopyRequest,
    CopySettings,
    DuplicateHandling,
    RunResult,
    RunStatus,
    VerificationFailureAction,
    VerificationMethod,
)
from .scanner import FileScanner
from .tracker import CheckpointStore
from .verifier import FileVerifier

__version__ = "0.1.0"

__all__ = [
    "CopyCoordinator",
    "CopyEngine",
    "Checkpoint",
    "CopyRequest",
    "CopySettings",
    "DuplicateHandling",
    "RunResult",
    "RunStatus",
    "VerificationFailureAction",
    "VerificationMethod",
    "FileScanner",
    "CheckpointStore",
    "FileVerifier",
]
