"""Upload collaborator backed by the rclone command line tool.

Anything with ``upload(local_path, destination) -> UploadResult`` and
``probe(destination) -> bool`` can stand in for `RcloneUploader`.
"""
from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from typing import Optional, Protocol


@dataclass(frozen=True)
class UploadResult:
    ok: bool
    returncode: Optional[int] = None
    detail: str = ""


class Uploader(Protocol):
    def upload(self, local_path: str, destination: str) -> UploadResult: ...

    def probe(self, destination: str) -> bool: ...


class RcloneUploader:
    """Run ``rclone copy`` for uploads and ``rclone lsd`` for probes.

    No timeout is applied: a hung rclone blocks the worker running it.
    """

    def __init__(self, command: str = "rclone", logger: Optional[logging.Logger] = None) -> None:
        self.command = command
        self.logger = logger or logging.getLogger("mv_archive")

    def _run(self, *args: str) -> subprocess.CompletedProcess:
        return subprocess.run(
            [self.command, *args],
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            check=False,
        )

    def upload(self, local_path: str, destination: str) -> UploadResult:
        try:
            proc = self._run("copy", local_path, destination)
        except OSError as exc:
            return UploadResult(ok=False, detail=f"failed to spawn {self.command}: {exc}")

        if proc.returncode == 0:
            return UploadResult(ok=True, returncode=0, detail=proc.stdout.strip())
        return UploadResult(ok=False, returncode=proc.returncode, detail=proc.stderr.strip())

    def probe(self, destination: str) -> bool:
        try:
            proc = self._run("lsd", destination)
        except OSError as exc:
            self.logger.warning("%s test failed for %s: %s", self.command, destination, exc)
            return False

        if proc.returncode != 0:
            self.logger.warning(
                "%s test failed for %s with code %s: %s",
                self.command,
                destination,
                proc.returncode,
                proc.stderr.strip(),
            )
            return False
        return True
