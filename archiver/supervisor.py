"""Daemon supervisor: starts and stops every directory session as a unit."""
from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass
from typing import List, Optional

from archiver.config import ArchiverConfig, DirectoryConfig
from archiver.dedup import TaskDeduplicator
from archiver.errors import SessionSetupError, SupervisorStateError
from archiver.pipeline import ArchivePipeline
from archiver.session import DirectorySession
from archiver.stability import StabilityDetector
from archiver.upload import RcloneUploader, Uploader


class SupervisorState(enum.Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass(frozen=True)
class SupervisorStatus:
    running: bool
    sessions: int
    schedules: int
    in_progress: int


class Supervisor:
    def __init__(
        self,
        config: ArchiverConfig,
        uploader: Optional[Uploader] = None,
        deduplicator: Optional[TaskDeduplicator] = None,
        stability: Optional[StabilityDetector] = None,
        temp_root: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config
        self.logger = logger or logging.getLogger("mv_archive")
        self.uploader = uploader or RcloneUploader(config.upload_command, logger=self.logger)
        self.deduplicator = deduplicator or TaskDeduplicator()
        self.stability = stability or StabilityDetector(
            initial=config.settle_initial,
            confirm=config.settle_confirm,
            logger=self.logger,
        )
        self.pipeline = ArchivePipeline(self.uploader, temp_root=temp_root, logger=self.logger)

        self._lock = threading.Lock()
        self._state = SupervisorState.STOPPED
        self._sessions: List[DirectorySession] = []

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def sessions(self) -> List[DirectorySession]:
        return list(self._sessions)

    def _make_session(self, entry: DirectoryConfig) -> DirectorySession:
        return DirectorySession(
            entry,
            pipeline=self.pipeline,
            deduplicator=self.deduplicator,
            stability=self.stability,
            uploader=self.uploader,
            workers=self.config.workers,
            scan_on_start=self.config.scan_on_start,
            logger=self.logger,
        )

    def start(self) -> None:
        """Arm one session per configured directory.

        Raises SupervisorStateError if not stopped, and SessionSetupError if a
        directory cannot be set up (sessions already started are stopped again).
        """
        with self._lock:
            if self._state is not SupervisorState.STOPPED:
                raise SupervisorStateError(f"Watch service is already {self._state.value}")
            self._state = SupervisorState.STARTING

        self.logger.info("Starting file watchers")
        started: List[DirectorySession] = []
        try:
            for entry in self.config.directories:
                session = self._make_session(entry)
                started.append(session)
                session.start()
        except BaseException as exc:
            self.logger.error("Startup failed, stopping %d session(s)", len(started))
            # stop() is a no-op for the session that never finished starting
            self._stop_sessions(started)
            with self._lock:
                self._state = SupervisorState.STOPPED
            if isinstance(exc, Exception) and not isinstance(exc, SessionSetupError):
                raise SessionSetupError(f"Cannot start sessions: {exc}") from exc
            raise

        with self._lock:
            self._sessions = started
            self._state = SupervisorState.RUNNING
        self.logger.info("mva daemon is running (%d directories)", len(started))

    def stop(self) -> None:
        with self._lock:
            if self._state is not SupervisorState.RUNNING:
                return
            self._state = SupervisorState.STOPPING
            sessions, self._sessions = self._sessions, []

        self.logger.info("Stopping file watchers")
        self._stop_sessions(sessions)

        with self._lock:
            self._state = SupervisorState.STOPPED
        self.logger.info("mva daemon stopped")

    def _stop_sessions(self, sessions: List[DirectorySession]) -> None:
        for session in sessions:
            try:
                session.stop()
            except Exception:
                self.logger.exception("Error stopping session for %s", session.path)

    def status(self) -> SupervisorStatus:
        sessions = list(self._sessions)
        return SupervisorStatus(
            running=self._state is SupervisorState.RUNNING,
            sessions=sum(1 for s in sessions if s.active),
            schedules=sum(1 for s in sessions if s.schedule_active),
            in_progress=len(self.deduplicator),
        )
