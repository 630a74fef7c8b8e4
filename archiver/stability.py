"""Write-stability heuristic for newly observed files.

A file is accepted when it is a regular file whose size is the same in two
samples taken `confirm` seconds apart, after an initial `initial` second
wait. This narrows the race against slow writers but does not remove it:
a writer that pauses for longer than the window can still be archived
mid-write.
"""
from __future__ import annotations

import logging
import os
import stat
import time
from dataclasses import dataclass
from typing import Callable, Optional


@dataclass(frozen=True)
class FileFingerprint:
    path: str
    size: int


def fingerprint(path: str) -> Optional[FileFingerprint]:
    """Return the fingerprint of `path`, or None if it is not a regular file."""
    try:
        st = os.stat(path)
    except OSError:
        return None
    if not stat.S_ISREG(st.st_mode):
        return None
    return FileFingerprint(os.path.abspath(path), st.st_size)


class StabilityDetector:
    def __init__(
        self,
        initial: float = 1.0,
        confirm: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.initial = initial
        self.confirm = confirm
        self.sleep = sleep
        self.logger = logger or logging.getLogger("mv_archive")

    def is_stable(self, path: str) -> bool:
        self.sleep(self.initial)
        first = fingerprint(path)
        if first is None:
            # Gone already or not a file: nothing to archive
            return False

        self.sleep(self.confirm)
        second = fingerprint(path)
        if second != first:
            self.logger.info("File still changing, skipping for now: %s", path)
            return False
        return True
