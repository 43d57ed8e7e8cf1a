"""
Module for verifying copied files against their source.
"""
import hashlib
import logging
import os

from .models import VerificationMethod, VerificationResult

logger = logging.getLogger(__name__)

# Filesystems round or truncate timestamps on copy.
MTIME_TOLERANCE_SECONDS = 2.0
HASH_CHUNK_SIZE = 1024 * 1024


class FileVerifier:
    """Compares a source/destination pair under a verification method.

    Holds no per-call state, so one instance can be shared by all workers.
    """

    def __init__(self, hash_algorithm: str = "md5", chunk_size: int = HASH_CHUNK_SIZE):
        """Initialize the verifier.

        Args:
            hash_algorithm: hashlib algorithm name used for full_hash
            chunk_size: Bytes read per iteration when hashing
        """
        hashlib.new(hash_algorithm)
        self.hash_algorithm = hash_algorithm
        self.chunk_size = chunk_size

    def verify(self, source_path: str, dest_path: str,
               method: VerificationMethod) -> VerificationResult:
        """Verify that the destination file matches the source file.

        Args:
            source_path: Path of the original file
            dest_path: Path of the copy
            method: Verification strength

        Returns:
            VerificationResult; errors are reported in ``error_message``
            rather than raised
        """
        method = VerificationMethod(method)
        result = VerificationResult(is_valid=False, method=method)

        if not os.path.isfile(source_path):
            result.error_message = "Source file not found"
            return result
        if not os.path.isfile(dest_path):
            result.error_message = "Destination file not found"
            return result

        try:
            source_stat = os.stat(source_path)
            dest_stat = os.stat(dest_path)
            result.source_size = source_stat.st_size
            result.dest_size = dest_stat.st_size
            result.source_modified = source_stat.st_mtime
            result.dest_modified = dest_stat.st_mtime

            if method == VerificationMethod.NONE:
                result.is_valid = True
            elif method == VerificationMethod.SIZE_ONLY:
                result.is_valid = self._sizes_match(result)
            elif method == VerificationMethod.STANDARD:
                result.is_valid = self._sizes_match(result) and self._mtimes_match(result)
            elif method == VerificationMethod.FULL_HASH:
                result.is_valid = self._hashes_match(source_path, dest_path, result)
        except OSError as e:
            result.is_valid = False
            result.error_message = f"Verification error: {e}"

        if not result.is_valid:
            logger.debug(f"Verification ({method.value}) failed for {dest_path}: {result.error_message}")
        return result

    def _sizes_match(self, result: VerificationResult) -> bool:
        if result.source_size != result.dest_size:
            result.error_message = (
                f"Size mismatch: Source={result.source_size}, Dest={result.dest_size}"
            )
            return False
        return True

    def _mtimes_match(self, result: VerificationResult) -> bool:
        if abs(result.dest_modified - result.source_modified) > MTIME_TOLERANCE_SECONDS:
            result.error_message = (
                f"Modified time mismatch: Source={result.source_modified}, "
                f"Dest={result.dest_modified}"
            )
            return False
        return True

    def _hashes_match(self, source_path: str, dest_path: str,
                      result: VerificationResult) -> bool:
        result.source_hash = self.file_digest(source_path)
        result.dest_hash = self.file_digest(dest_path)
        if result.source_hash != result.dest_hash:
            result.error_message = (
                f"Hash mismatch: Source={result.source_hash}, Dest={result.dest_hash}"
            )
            return False
        return True

    def file_digest(self, path: str) -> str:
        """Hex digest of a whole file, read in chunks."""
        digest = hashlib.new(self.hash_algorithm)
        with open(path, "rb") as f:
            while chunk := f.read(self.chunk_size):
                digest.update(chunk)
        return digest.hexdigest()
