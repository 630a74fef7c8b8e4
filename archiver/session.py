"""One watched directory: a watchdog observer plus a cron sweep.

Both triggers hand candidate paths to the same worker pool, and every
candidate goes through the shared `TaskDeduplicator` before the pipeline
runs, so an event and a sweep racing on one file archive it once.
"""
from __future__ import annotations

import enum
import logging
import os
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import List, Optional

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from archiver.config import DirectoryConfig
from archiver.dedup import TaskDeduplicator
from archiver.errors import ArchiveError, SessionSetupError
from archiver.pipeline import ArchivePipeline, ArchiveTask
from archiver.schedule import CronTrigger
from archiver.stability import StabilityDetector, fingerprint
from archiver.upload import Uploader


class Outcome(enum.Enum):
    ARCHIVED = "archived"
    FAILED = "failed"
    BUSY = "busy"
    UNSTABLE = "unstable"
    GONE = "gone"


def is_hidden(path: str) -> bool:
    return os.path.basename(path).startswith(".")


class NewFileHandler(FileSystemEventHandler):
    """Forward direct-child file creations (and moves into the directory) to the session."""

    def __init__(self, session: "DirectorySession") -> None:
        super().__init__()
        self.session = session

    def _accept(self, path: str) -> bool:
        if is_hidden(path):
            return False
        parent = os.path.dirname(os.path.abspath(path))
        return parent == self.session.path

    def on_created(self, event):
        # Ignore directories
        if event.is_directory:
            return
        if self._accept(event.src_path):
            self.session.submit(event.src_path, check_stability=True)

    def on_moved(self, event):
        if event.is_directory:
            return
        if self._accept(event.dest_path):
            self.session.submit(event.dest_path, check_stability=True)


class DirectorySession:
    def __init__(
        self,
        config: DirectoryConfig,
        pipeline: ArchivePipeline,
        deduplicator: TaskDeduplicator,
        stability: StabilityDetector,
        uploader: Uploader,
        workers: int = 4,
        scan_on_start: bool = True,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config
        self.path = os.path.abspath(config.path)
        self.pipeline = pipeline
        self.deduplicator = deduplicator
        self.stability = stability
        self.uploader = uploader
        self.workers = workers
        self.scan_on_start = scan_on_start
        self.logger = logger or logging.getLogger("mv_archive")

        self._executor: Optional[ThreadPoolExecutor] = None
        self._observer: Optional[Observer] = None
        self._schedule: Optional[CronTrigger] = None

    @property
    def active(self) -> bool:
        return self._observer is not None

    @property
    def schedule_active(self) -> bool:
        return self._schedule is not None and self._schedule.active

    def start(self) -> None:
        """Probe the destination, then arm the watcher and the schedule.

        Raises SessionSetupError if the directory cannot be created or watched;
        nothing is left running in that case.
        """
        if self.active:
            return

        self._probe()

        try:
            os.makedirs(self.path, exist_ok=True)
        except OSError as exc:
            raise SessionSetupError(f"Cannot create {self.path}: {exc}") from exc

        name = os.path.basename(self.path) or "root"
        try:
            schedule = CronTrigger(
                self.config.schedule,
                self.sweep,
                timezone=self.config.timezone,
                name=f"mva-cron-{name}",
                logger=self.logger,
            )
        except Exception as exc:
            raise SessionSetupError(f"Invalid schedule for {self.path}: {exc}") from exc

        self._executor = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix=f"mva-{name}")
        observer = Observer()
        try:
            observer.schedule(NewFileHandler(self), self.path, recursive=False)
            observer.start()
            schedule.start()
        except Exception as exc:
            if observer.is_alive():
                observer.stop()
                observer.join()
            schedule.cancel()
            self._executor.shutdown(wait=False)
            self._executor = None
            raise SessionSetupError(f"Cannot watch {self.path}: {exc}") from exc
        self._observer = observer
        self._schedule = schedule

        self.logger.info("Watching: %s (schedule: %s)", self.path, self.config.schedule)

        if self.scan_on_start:
            for path in self.list_candidates():
                if not is_hidden(path):
                    self.submit(path, check_stability=True)

    def _probe(self) -> None:
        try:
            reachable = self.uploader.probe(self.config.destination)
        except Exception:
            self.logger.exception("Destination probe for %s failed", self.config.destination)
            reachable = False
        if not reachable:
            self.logger.warning("Could not connect to %s. Files will be queued.", self.config.destination)

    def stop(self) -> None:
        """Close the watcher and cancel the schedule; in-flight archives finish first."""
        if not self.active:
            return

        observer, self._observer = self._observer, None
        observer.stop()
        observer.join()

        if self._schedule is not None:
            self._schedule.cancel()
            self._schedule = None

        if self._executor is not None:
            # Queued work is dropped; the files stay in the directory for the next trigger.
            self._executor.shutdown(wait=True, cancel_futures=True)
            self._executor = None

        self.logger.info("Stopped watching: %s", self.path)

    def list_candidates(self) -> List[str]:
        candidates = []
        try:
            with os.scandir(self.path) as it:
                for entry in it:
                    if entry.is_file(follow_symlinks=True):
                        candidates.append(entry.path)
        except OSError:
            self.logger.exception("Failed to list directory %s", self.path)
        return sorted(candidates)

    def submit(self, path: str, check_stability: bool) -> Optional[Future]:
        executor = self._executor
        if executor is None:
            return None
        try:
            return executor.submit(self.process_candidate, path, check_stability, datetime.now(timezone.utc))
        except RuntimeError:
            # Executor shut down between the check and the submit
            return None

    def sweep(self) -> List[Future]:
        """Queue every regular file in the directory without the stability wait."""
        self.logger.info("Scheduled processing for %s", self.path)
        files = self.list_candidates()
        if not files:
            self.logger.info("No files to process in %s", self.path)
            return []

        self.logger.info("Processing %d files from %s", len(files), self.path)
        futures = []
        for path in files:
            future = self.submit(path, check_stability=False)
            if future is not None:
                futures.append(future)
        return futures

    def process_candidate(
        self,
        path: str,
        check_stability: bool = True,
        detected_at: Optional[datetime] = None,
    ) -> Outcome:
        """Archive `path` unless another task holds it or it is not ready.

        `detected_at` is when the trigger observed the file; it feeds the
        archive name and defaults to now.
        """
        detected_at = detected_at or datetime.now(timezone.utc)
        with self.deduplicator.claim(path) as acquired:
            if not acquired:
                self.logger.info("Archive already in progress, skipping %s", path)
                return Outcome.BUSY

            if check_stability:
                if not self.stability.is_stable(path):
                    return Outcome.UNSTABLE
            elif fingerprint(path) is None:
                # Archived by another trigger or removed meanwhile
                return Outcome.GONE

            self.logger.info("New file detected: %s", path)
            try:
                self.pipeline.archive(ArchiveTask(source_path=path, config=self.config, detected_at=detected_at))
            except ArchiveError as exc:
                self.logger.error("Failed to archive %s to %s: %s", path, self.config.destination, exc)
                return Outcome.FAILED
            except Exception:
                self.logger.exception("Error processing file %s", path)
                return Outcome.FAILED
            return Outcome.ARCHIVED
