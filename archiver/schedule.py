"""Cron-driven timer thread used for scheduled directory sweeps."""
from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from croniter import croniter


class CronTrigger:
    """Call `callback` every time the 5-field cron `expression` fires.

    Exceptions raised by the callback are logged and the timer keeps going.
    """

    def __init__(
        self,
        expression: str,
        callback: Callable[[], object],
        timezone: Optional[str] = None,
        name: str = "cron",
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.expression = expression
        self.callback = callback
        self.tz = ZoneInfo(timezone) if timezone else None
        self.name = name
        self.logger = logger or logging.getLogger("mv_archive")
        self._cancelled = threading.Event()
        self._last_fire: Optional[datetime] = None
        self._pending: Optional[datetime] = None
        self._thread: Optional[threading.Thread] = None

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def next_fire(self, after: Optional[datetime] = None) -> datetime:
        return croniter(self.expression, after or self.now()).get_next(datetime)

    def next_delay(self) -> float:
        now = self.now()
        after = max(now, self._last_fire) if self._last_fire else now
        self._pending = self.next_fire(after)
        return max(0.0, (self._pending - now).total_seconds())

    @property
    def active(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.active:
            return
        self._cancelled.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def cancel(self) -> None:
        self._cancelled.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join()
        self._thread = None

    def _run(self) -> None:
        while not self._cancelled.wait(self.next_delay()):
            self._last_fire = self._pending
            try:
                self.callback()
            except Exception:
                self.logger.exception("Scheduled run %s (%s) failed", self.name, self.expression)
