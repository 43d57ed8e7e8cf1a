"""
Module for scanning source trees and building the filename lookup index.
"""
import logging
import os
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Union

from .exceptions import ScanError

logger = logging.getLogger(__name__)


def search_key(filename: str, ignore_extension: bool, case_insensitive: bool) -> str:
    """Normalize a filename into the key used for matching.

    The same function builds the index and looks up manifest entries, so the
    two sides always agree.

    Args:
        filename: Bare filename (no directory part)
        ignore_extension: Drop the final extension
        case_insensitive: Fold case

    Returns:
        Normalized search key
    """
    key = filename
    if ignore_extension:
        key = os.path.splitext(key)[0]
    if case_insensitive:
        key = key.lower()
    return key


class SourceIndex:
    """Read-only mapping from search key to the first matching source path."""

    def __init__(self, ignore_extension: bool, case_insensitive: bool):
        self.ignore_extension = ignore_extension
        self.case_insensitive = case_insensitive
        self._paths: Dict[str, str] = {}
        self.shadowed = 0

    def _add(self, path: str) -> None:
        key = self.key_for(os.path.basename(path))
        if key in self._paths:
            self.shadowed += 1
            logger.debug(f"Duplicate key {key!r}: keeping {self._paths[key]}, ignoring {path}")
            return
        self._paths[key] = path

    def key_for(self, filename: str) -> str:
        return search_key(filename, self.ignore_extension, self.case_insensitive)

    def lookup(self, manifest_entry: str) -> Optional[str]:
        """Resolve a manifest entry to a source path, or None."""
        return self._paths.get(self.key_for(manifest_entry))

    def as_dict(self) -> Dict[str, str]:
        return dict(self._paths)

    def __len__(self) -> int:
        return len(self._paths)

    def __contains__(self, manifest_entry: str) -> bool:
        return self.lookup(manifest_entry) is not None


class FileScanner:
    """Scans source folders and builds lookup indexes."""

    def scan(self, root: Union[str, Path],
             cancel_event: Optional[threading.Event] = None) -> List[str]:
        """Recursively list every regular file below a folder.

        Unreadable directories are logged and skipped so one bad subtree
        does not prevent indexing the rest. Directory entries are visited in
        sorted order, which keeps enumeration deterministic.

        Args:
            root: Folder to scan
            cancel_event: Optional event; scanning stops early when set

        Returns:
            List of absolute file paths
        """
        root = Path(root)
        if not root.exists():
            logger.error(f"Folder does not exist: {root}")
            return []
        if not root.is_dir():
            raise ScanError(f"{root} is not a directory")

        files: List[str] = []
        pending = [os.path.abspath(root)]

        while pending:
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"Scan of {root} cancelled after {len(files)} files")
                break
            folder = pending.pop()
            try:
                with os.scandir(folder) as it:
                    entries = sorted(it, key=lambda entry: entry.name)
            except OSError as e:
                logger.warning(f"Skipping unreadable folder {folder}: {e.strerror or e}")
                continue

            subfolders = []
            for entry in entries:
                try:
                    if entry.is_dir(follow_symlinks=False):
                        subfolders.append(entry.path)
                    elif entry.is_file():
                        files.append(entry.path)
                except OSError as e:
                    logger.warning(f"Skipping unreadable entry {entry.path}: {e}")
            # Depth first, first subfolder next
            pending.extend(reversed(subfolders))

        logger.info(f"Found {len(files)} files in {root}")
        return files

    def build_index(self, paths: Iterable[str], ignore_extension: bool = False,
                    case_insensitive: bool = False) -> SourceIndex:
        """Build a search-key index over scanned paths.

        When several files share a key, the first one encountered wins and
        the rest are not reachable by matching.

        Args:
            paths: File paths, typically from :meth:`scan`
            ignore_extension: Match names without their extension
            case_insensitive: Match names regardless of case

        Returns:
            SourceIndex for lookups
        """
        index = SourceIndex(ignore_extension, case_insensitive)
        for path in paths:
            index._add(path)

        if index.shadowed:
            logger.warning(
                f"{index.shadowed} files share a search key with an earlier file "
                f"and will never be matched (first occurrence wins)"
            )
        logger.info(f"Index built with {len(index)} entries")
        return index


def unique_destination(path: Union[str, Path],
                       reserved: Optional[Set[str]] = None) -> str:
    """Return ``path`` or the first free ``name_N.ext`` variant of it.

    Callers running in parallel must hold a lock around this call and the
    subsequent reservation, otherwise two workers can pick the same name.

    Args:
        path: Desired destination path
        reserved: Paths already claimed in this run but not yet written

    Returns:
        A path that neither exists nor is reserved
    """
    reserved = reserved or set()

    def is_taken(candidate: str) -> bool:
        return candidate in reserved or os.path.exists(candidate)

    path = str(path)
    if not is_taken(path):
        return path

    directory, filename = os.path.split(path)
    stem, extension = os.path.splitext(filename)
    counter = 1
    while True:
        candidate = os.path.join(directory, f"{stem}_{counter}{extension}")
        if not is_taken(candidate):
            return candidate
        counter += 1
