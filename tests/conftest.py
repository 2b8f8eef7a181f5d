from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest


def pytest_configure() -> None:
    root = Path(__file__).resolve().parents[1]
    if str(root) not in sys.path:
        sys.path.insert(0, str(root))


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 5, 1, 10, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def locks(tmp_path):
    from parallel_sync.locks import LockRegistry

    return LockRegistry(tmp_path / "locks", timeout=2.0)


@pytest.fixture
def write_dataset(tmp_path):
    from parallel_sync import storage

    def _write(rows, name: str = "parallel.jsonl") -> Path:
        path = tmp_path / name
        storage.write_jsonl(path, rows)
        return path

    return _write
