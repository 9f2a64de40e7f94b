"""
Recurring task runner

A ScheduledTask pairs an interval with a function taking the current time.
`run_once(now)` calls the function directly so sweeps can be exercised with a
fixed clock; `start()` runs it on a daemon thread.
"""
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import structlog

logger = structlog.get_logger(__name__)


class ScheduledTask:
    """Run `func(now)` every `interval_seconds`"""

    def __init__(self, name: str, interval_seconds: float, func: Callable[[datetime], Any]):
        self.name = name
        self.interval_seconds = interval_seconds
        self.func = func
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def run_once(self, now: Optional[datetime] = None) -> Any:
        return self.func(now or datetime.now(timezone.utc))

    def _loop(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            try:
                self.run_once()
            except Exception:
                logger.exception("scheduled_task_failed", task=self.name)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name=f"task-{self.name}", daemon=True)
        self._thread.start()
        logger.info("scheduled_task_started", task=self.name, interval_seconds=self.interval_seconds)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("scheduled_task_stopped", task=self.name)
