"""
Test fixtures for the manifest copier.
"""
import uuid
from pathlib import Path
import pytest

from manifest_copier.coordinator import CopyCoordinator
from manifest_copier.models import CopyRequest, CopySettings, SessionCounters
from manifest_copier.scanner import FileScanner
from manifest_copier.tracker import CheckpointStore


def make_file(folder: Path, relative: str, content: bytes = b"0123456789") -> Path:
    """Create a file (and its parent folders) with the given content."""
    path = folder / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Keep default checkpoint folders out of the real home directory."""
    monkeypatch.setenv("MANIFEST_COPIER_HOME", str(tmp_path / "home"))


@pytest.fixture
def source_dir(tmp_path):
    """Create a temporary source tree."""
    source = tmp_path / "source"
    source.mkdir()
    return source


@pytest.fixture
def dest_dir(tmp_path):
    """Destination folder path (not created; the copier creates it)."""
    return tmp_path / "dest"


@pytest.fixture
def checkpoint_dir(tmp_path):
    """Create a temporary checkpoint directory."""
    folder = tmp_path / "checkpoints"
    folder.mkdir()
    return folder


@pytest.fixture
def checkpoint_store(checkpoint_dir):
    """Create a test checkpoint store."""
    return CheckpointStore(checkpoint_dir=checkpoint_dir)


@pytest.fixture
def coordinator(checkpoint_store):
    """Create a test coordinator with no retry delay."""
    return CopyCoordinator(store=checkpoint_store, retry_delay=0)


@pytest.fixture
def counters():
    """Fresh session counters."""
    return SessionCounters()


@pytest.fixture
def sequential_settings():
    """Sequential settings with the default verification."""
    return CopySettings(enable_parallel=False)


@pytest.fixture
def photo_tree(source_dir):
    """A nested source tree with a few photos."""
    make_file(source_dir, "2023/a.jpg", b"aaaaaaaaaa")
    make_file(source_dir, "2023/b.jpg", b"bbbbbbbbbbbbbbbbbbbb")
    make_file(source_dir, "2024/raw/c.NEF", b"c" * 30)
    make_file(source_dir, "2024/d.png", b"d" * 5)
    return source_dir


@pytest.fixture
def build_index(photo_tree):
    """Factory building an index over the photo tree."""
    def _build(ignore_extension=False, case_insensitive=False):
        scanner = FileScanner()
        return scanner.build_index(
            scanner.scan(photo_tree),
            ignore_extension=ignore_extension,
            case_insensitive=case_insensitive,
        )
    return _build


@pytest.fixture
def copy_request(photo_tree, dest_dir):
    """Factory for copy requests against the photo tree."""
    def _make(manifest, **settings):
        settings.setdefault("enable_parallel", False)
        return CopyRequest(
            source_folder=photo_tree,
            dest_folder=dest_dir,
            manifest=manifest,
            settings=CopySettings(**settings),
            session_id=str(uuid.uuid4()),
        )
    return _make
