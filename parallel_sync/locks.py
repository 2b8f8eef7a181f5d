"""
Named exclusive locks shared by threads and processes.

Each name maps to a ``threading.Lock`` (threads of this process) and an
``flock`` on ``<lock_dir>/<name>.lock`` (other processes, e.g. a merge job
started from the CLI while the API server runs). Acquisition is bounded by a
timeout and raises :class:`LockTimeoutError` instead of blocking forever.
"""

from __future__ import annotations

import fcntl
import os
import re
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Optional

from .errors import LockTimeoutError


SEGMENTS_LOCK = "segments"
PRESENCE_LOCK = "presence"

_NAME_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


def section_lock_name(section: str) -> str:
    return f"section-{section}"


class LockRegistry:
    def __init__(self, lock_dir: str | Path, timeout: float = 10.0, poll_interval: float = 0.01):
        self.lock_dir = Path(lock_dir)
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._guard = threading.Lock()
        self._thread_locks: Dict[str, threading.Lock] = {}

    def _thread_lock(self, name: str) -> threading.Lock:
        with self._guard:
            lock = self._thread_locks.get(name)
            if lock is None:
                lock = threading.Lock()
                self._thread_locks[name] = lock
            return lock

    @contextmanager
    def hold(self, name: str, timeout: Optional[float] = None) -> Iterator[None]:
        if not _NAME_RE.match(name):
            raise ValueError(f"Invalid lock name: {name!r}")
        limit = self.timeout if timeout is None else timeout
        deadline = time.monotonic() + limit

        tlock = self._thread_lock(name)
        if not tlock.acquire(timeout=max(limit, 0.0)):
            raise LockTimeoutError(f"Timed out after {limit}s waiting for lock '{name}'")
        try:
            self.lock_dir.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.lock_dir / f"{name}.lock", os.O_RDWR | os.O_CREAT, 0o644)
            try:
                while True:
                    try:
                        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                        break
                    except BlockingIOError:
                        if time.monotonic() >= deadline:
                            raise LockTimeoutError(
                                f"Timed out after {limit}s waiting for lock '{name}' (held by another process)"
                            )
                        time.sleep(self.poll_interval)
                try:
                    yield
                finally:
                    fcntl.flock(fd, fcntl.LOCK_UN)
            finally:
                os.close(fd)
        finally:
            tlock.release()
