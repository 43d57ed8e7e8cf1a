"""
Module for reading file manifests and exporting unmatched entries.
"""
import logging
import re
from pathlib import Path
from typing import Iterable, List, Union

from .exceptions import ManifestError

logger = logging.getLogger(__name__)

_LINE_BREAKS = re.compile(r"[\r\n]+")


def parse_manifest_text(text: str) -> List[str]:
    """Split a pasted block into manifest entries.

    Lines are split on CR/LF, trimmed, and blank lines dropped. Entries are
    otherwise kept exactly as typed.

    Args:
        text: Raw pasted text

    Returns:
        List of manifest entries in their original order
    """
    if not text:
        return []
    return [line.strip() for line in _LINE_BREAKS.split(text) if line.strip()]


def read_manifest(path: Union[str, Path]) -> List[str]:
    """Read a manifest file with one filename per line.

    Args:
        path: Path to the manifest file

    Returns:
        List of manifest entries

    Raises:
        ManifestError: If the file cannot be read
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8-sig")
    except (OSError, UnicodeDecodeError) as e:
        raise ManifestError(f"Cannot read manifest {path}: {e}") from e

    entries = parse_manifest_text(text)
    logger.info(f"Read {len(entries)} entries from manifest {path}")
    return entries


def export_entries(entries: Iterable[str], path: Union[str, Path]) -> int:
    """Write entries to a plain-text file, one per line.

    Args:
        entries: Manifest entries to write
        path: Output file path

    Returns:
        Number of entries written
    """
    lines = list(entries)
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        for line in lines:
            f.write(f"{line}\n")

    logger.info(f"Exported {len(lines)} entries to {path}")
    return len(lines)
