"""Deadline watchdog: proactive cleanup before the host kills the invocation.

A daemon thread waits on a one-shot cancellation event armed for
``deadline - margin``. If the main path cancels first the thread exits with
no side effects; if the timer wins it runs the timeout callback (workspace
release) and logs a critical record. The in-flight registry or build call is
not interrupted.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

logger = logging.getLogger(__name__)

DEFAULT_MARGIN = timedelta(seconds=10)
TIMEOUT_MESSAGE = "Invocation timeout error"


class DeadlineWatchdog:
    """Races the invocation deadline against a cancellation signal.

    Parameters
    ----------
    deadline:
        Absolute, timezone-aware deadline of the invocation.
    on_timeout:
        Called from the watchdog thread when the timer fires. Must be
        idempotent with the main path's own cleanup.
    margin:
        How long before *deadline* to fire.
    log:
        Logger (or adapter) receiving the timeout record.
    """

    def __init__(
        self,
        deadline: datetime,
        on_timeout: Callable[[], None],
        *,
        margin: timedelta = DEFAULT_MARGIN,
        log: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self._fire_at = deadline - margin
        self._margin = margin
        self._on_timeout = on_timeout
        self._log = log or logger
        self._cancelled = threading.Event()
        self._thread: threading.Thread | None = None
        self.fired = False

    @property
    def fire_at(self) -> datetime:
        return self._fire_at

    def start(self) -> DeadlineWatchdog:
        if self._thread is not None:
            raise RuntimeError("watchdog already started")
        self._thread = threading.Thread(target=self._run, name="deadline-watchdog", daemon=True)
        self._thread.start()
        return self

    def cancel(self) -> None:
        """Signal normal completion and wait for the thread to exit."""
        self._cancelled.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join()

    def _run(self) -> None:
        wait = (self._fire_at - datetime.now(timezone.utc)).total_seconds()
        if self._cancelled.wait(max(wait, 0.0)):
            return
        self.fired = True
        try:
            self._on_timeout()
        finally:
            total = self._margin.total_seconds()
            self._log.critical(
                "%s: invocation timeout, cleaned up %.0f seconds before the deadline",
                TIMEOUT_MESSAGE,
                total,
            )

    def __enter__(self) -> DeadlineWatchdog:
        return self.start()

    def __exit__(self, *exc_info: object) -> None:
        self.cancel()
