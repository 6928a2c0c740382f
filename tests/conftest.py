from __future__ import annotations

import shutil
import subprocess
import sys
import threading
from collections.abc import Sequence
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from spkeeper.errors import FetchError
from spkeeper.models import DatabaseConfig, SyncConfig

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git binary not available")


def git(path: Path, *args: str) -> str:
    """Run plain git in ``path`` for test setup, with a throwaway identity."""
    cmd = ["git", "-C", str(path), "-c", "user.name=tester", "-c", "user.email=tester@example.com", *args]
    return subprocess.run(cmd, capture_output=True, text=True, check=True).stdout


def commit_parents(path: Path, commit_id: str) -> list[str]:
    return git(path, "rev-list", "--parents", "-n", "1", commit_id).split()[1:]


class FakeProcedureSource:
    """In-memory stand-in for ``ProcedureSource`` that records concurrency."""

    def __init__(self, bodies: dict[str, Sequence[str]], failing: dict[str, Exception] | None = None):
        self.bodies = dict(bodies)
        self.failing = dict(failing or {})
        self.calls: list[str] = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def list_procedure_names(self) -> list[str]:
        return list(self.bodies) + [name for name in self.failing if name not in self.bodies]

    def fetch_procedure_body(self, name: str) -> list[str]:
        with self._lock:
            self.calls.append(name)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if name in self.failing:
                raise self.failing[name]
            if name not in self.bodies:
                raise FetchError(name, "no such procedure")
            return list(self.bodies[name])
        finally:
            with self._lock:
                self.active -= 1

    def connect(self) -> None:
        pass

    def close(self) -> None:
        pass

    def __enter__(self) -> "FakeProcedureSource":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


@pytest.fixture
def make_config(tmp_path):
    def _make(database: str = "orders", workers: int = 5, **overrides) -> SyncConfig:
        return SyncConfig(
            database=DatabaseConfig(database=database),
            output_dir=overrides.pop("output_dir", tmp_path),
            workers=workers,
            **overrides,
        )

    return _make


@pytest.fixture
def orders_source() -> FakeProcedureSource:
    return FakeProcedureSource(
        {
            "GetOrder": ["SELECT 1"],
            "CancelOrder": ["UPDATE x SET y=1"],
        }
    )
