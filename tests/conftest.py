"""Pytest configuration and shared fixtures."""

import threading
from pathlib import Path

import pytest

from commoncrawl_parse.checkpoint.store import LocalFileStore
from commoncrawl_parse.checkpoint.submission import JobReport


@pytest.fixture
def repo_root():
    """Return the repository root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def src_path(repo_root):
    """Return the src directory path."""
    return repo_root / "src"


@pytest.fixture
def store(tmp_path):
    """Empty local store rooted in a temp directory."""
    return LocalFileStore(tmp_path / "store")


def write_valid_segment(store, segment_id, *, all_lines=(), failed=(), partial=()):
    """Seed valid_segments/<segment_id>/ with its three manifests."""
    base = f"valid_segments/{segment_id}"
    store.write(f"{base}/splits.txt", "".join(f"{l}\n" for l in all_lines))
    if failed:
        store.write(f"{base}/failed_splits.txt", "".join(f"{l}\n" for l in failed))
    if partial:
        store.write(f"{base}/trailing_splits.txt", "".join(f"{l}\n" for l in partial))


def write_staged_segment(store, checkpoint_id, segment_id, lines, *, succeeded=False):
    """Seed a segment of a fully constructed staged checkpoint."""
    base = f"checkpoint_staging/{checkpoint_id}"
    store.write(f"{base}/{segment_id}/splits.txt", "".join(f"{l}\n" for l in lines))
    if succeeded:
        store.atomic_create(f"{base}/{segment_id}/_SUCCESS")
    store.atomic_create(f"{base}/_BUILT")


class FakeEngine:
    """Records submissions; fails segments listed in ``fail``."""

    def __init__(self, fail=(), report=None):
        self.fail = set(fail)
        self.report = report or JobReport(completed=True)
        self.submitted = []
        self._lock = threading.Lock()

    def submit(self, request):
        with self._lock:
            self.submitted.append(request)
        if request.segment_id in self.fail:
            raise RuntimeError("simulated engine failure")
        return self.report


@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def seed_segment(store):
    """Return a helper that seeds a valid segment in ``store``."""
    def _seed(segment_id, **kwargs):
        write_valid_segment(store, segment_id, **kwargs)
    return _seed


@pytest.fixture
def stage_segment(store):
    """Return a helper that seeds a staged checkpoint segment in ``store``."""
    def _stage(checkpoint_id, segment_id, lines, **kwargs):
        write_staged_segment(store, checkpoint_id, segment_id, lines, **kwargs)
    return _stage


@pytest.fixture
def engine_factory():
    return FakeEngine
