"""In-flight tracking so a path is archived by one task at a time."""
from __future__ import annotations

import os
import threading
from contextlib import contextmanager
from typing import Iterator, Set


class TaskDeduplicator:
    """Process-wide set of source paths with an archive in progress.

    Keys are absolute paths, so one instance can be shared by every
    directory session and the manual archive command.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._in_progress: Set[str] = set()

    @staticmethod
    def _key(path: str) -> str:
        return os.path.abspath(path)

    def try_acquire(self, path: str) -> bool:
        key = self._key(path)
        with self._lock:
            if key in self._in_progress:
                return False
            self._in_progress.add(key)
            return True

    def release(self, path: str) -> None:
        with self._lock:
            self._in_progress.discard(self._key(path))

    @contextmanager
    def claim(self, path: str) -> Iterator[bool]:
        """Yield whether `path` was acquired; release it on exit if so."""
        acquired = self.try_acquire(path)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(path)

    def is_in_progress(self, path: str) -> bool:
        with self._lock:
            return self._key(path) in self._in_progress

    def __len__(self) -> int:
        with self._lock:
            return len(self._in_progress)
