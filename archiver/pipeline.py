"""Archive pipeline: stage, compress, upload and remove a single file.

The original file is only removed after the upload collaborator reports
success. The per-task working directory is removed on every exit path.
"""
from __future__ import annotations

import logging
import os
import shutil
import stat
import tarfile
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from archiver.config import COMPRESSION_KINDS, DirectoryConfig
from archiver.errors import CompressionError, ConfigurationError, SourceFileError, UploadError
from archiver.naming import FileMetadata, render_name
from archiver.upload import Uploader


@dataclass(frozen=True)
class ArchiveTask:
    source_path: str
    config: DirectoryConfig
    detected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class ArchiveResult:
    source_path: str
    artifact_name: str
    destination: str
    size: int


class ArchivePipeline:
    def __init__(
        self,
        uploader: Uploader,
        temp_root: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.uploader = uploader
        self.temp_root = temp_root
        self.logger = logger or logging.getLogger("mv_archive")

    def archive(self, task: ArchiveTask) -> ArchiveResult:
        """Run the pipeline for `task` and return what was uploaded.

        Raises ConfigurationError, SourceFileError, CompressionError or
        UploadError; other OSErrors from copying or removal propagate as-is.
        """
        config = task.config
        if config.compression not in COMPRESSION_KINDS:
            raise ConfigurationError(f"Unsupported compression format: {config.compression}")

        metadata = self._capture(task)
        name = render_name(metadata, config.naming_template)
        if name in ("", os.curdir, os.pardir) or os.sep in name or (os.altsep and os.altsep in name):
            raise ConfigurationError(f"Archive name {name!r} from template {config.naming_template!r} is not a plain file name")

        if self.temp_root:
            os.makedirs(self.temp_root, exist_ok=True)
        with tempfile.TemporaryDirectory(prefix="mva-", dir=self.temp_root) as workdir:
            staged = os.path.join(workdir, name)
            shutil.copy2(task.source_path, staged)

            artifact = self._compress(staged, config.compression)

            result = self.uploader.upload(artifact, config.destination)
            if not result.ok:
                raise UploadError(config.destination, result.detail, result.returncode)

            os.remove(task.source_path)

        self.logger.info("Archived %s to %s as %s", task.source_path, config.destination, os.path.basename(artifact))
        return ArchiveResult(
            source_path=task.source_path,
            artifact_name=os.path.basename(artifact),
            destination=config.destination,
            size=metadata.size,
        )

    def _capture(self, task: ArchiveTask) -> FileMetadata:
        try:
            st = os.stat(task.source_path)
        except OSError as exc:
            raise SourceFileError(f"Cannot read {task.source_path}: {exc}") from exc
        if not stat.S_ISREG(st.st_mode):
            raise SourceFileError(f"Not a regular file: {task.source_path}")
        if not os.access(task.source_path, os.R_OK):
            raise SourceFileError(f"Permission denied: {task.source_path}")
        return FileMetadata.from_path(task.source_path, detected_at=task.detected_at)

    def _compress(self, staged: str, compression: str) -> str:
        if compression == "none":
            return staged

        artifact = f"{staged}.tar.gz"
        try:
            with tarfile.open(artifact, "w:gz") as tar:
                tar.add(staged, arcname=os.path.basename(staged))
        except (tarfile.TarError, OSError) as exc:
            raise CompressionError(f"Could not create {os.path.basename(artifact)}: {exc}") from exc
        os.remove(staged)
        return artifact
