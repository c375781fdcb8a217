from __future__ import annotations

import importlib
from datetime import datetime, timedelta
from pathlib import Path
import sys


import pytest


# Ensure the repository root (parent of ./tests) is importable during pytest collection.
# This avoids ModuleNotFoundError for imports like `import persistence...` under pytest import modes
# that don't automatically prepend the cwd/rootdir to sys.path.
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))


class StepClock:
    """Deterministic clock: each call returns a time one minute after the previous one."""

    def __init__(self, start: datetime | None = None, step: timedelta = timedelta(minutes=1)):
        self.now = start or datetime(2025, 3, 1, 12, 0, 0)
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


@pytest.fixture
def data_root(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """
    Point the store at a temp data directory so tests never touch real ./data.
    """
    root = tmp_path / "data"
    monkeypatch.setenv("DOCSTORE_DATA_DIR", str(root))
    monkeypatch.setenv("DOCSTORE_LOCK_ATTEMPTS", "20")
    monkeypatch.setenv("DOCSTORE_LOCK_WAIT_MS", "10")
    return root


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def store(data_root: Path, clock: StepClock):
    from persistence.document_store import DocumentStore

    return DocumentStore(data_root, clock=clock)


@pytest.fixture
def reload_endpoints(data_root: Path) -> None:
    """
    Endpoints create repo singletons at import time; reload after sandboxing paths.
    """
    import endpoints.document_endpoints as document_endpoints

    importlib.reload(document_endpoints)
