"""Cooperative cancellation for blocking OBSERVE reads."""

from __future__ import annotations

import logging
from threading import Event, Thread
from typing import Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class ChangeEventSourceContext(Protocol):
    def is_running(self) -> bool: ...


class RunningFlag:
    """Level-triggered "keep running" flag shared between threads."""

    def __init__(self) -> None:
        self._stopped = Event()

    def is_running(self) -> bool:
        return not self._stopped.is_set()

    def stop(self) -> None:
        self._stopped.set()

    def wait_stopped(self, timeout: Optional[float] = None) -> bool:
        return self._stopped.wait(timeout)


class CancellationWatcher:
    """Polls the running flag and aborts the in-flight query once it turns false.

    The watcher fires at most once and never touches stream state.
    """

    def __init__(
        self,
        context: ChangeEventSourceContext,
        cancel: Callable[[], None],
        *,
        poll_interval: float = 1.0,
        name: str = "observe-cancellation-watcher",
    ) -> None:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self._context = context
        self._cancel = cancel
        self._poll_interval = poll_interval
        self._done = Event()
        self._fired = Event()
        self._thread = Thread(target=self._run, name=name, daemon=True)

    @property
    def fired(self) -> bool:
        return self._fired.is_set()

    def start(self) -> "CancellationWatcher":
        self._thread.start()
        return self

    def stop(self) -> None:
        self._done.set()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread.is_alive():
            self._thread.join(timeout)

    def _run(self) -> None:
        while not self._done.is_set():
            if not self._context.is_running():
                self._fire()
                return
            self._done.wait(self._poll_interval)

    def _fire(self) -> None:
        self._fired.set()
        logger.info("stream stop requested; cancelling the running OBSERVE query")
        try:
            self._cancel()
        except Exception:  # noqa: BLE001 - the reader surfaces its own failure
            logger.exception("failed to cancel the running OBSERVE query")


__all__ = ["CancellationWatcher", "ChangeEventSourceContext", "RunningFlag"]
