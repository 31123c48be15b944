"""Deferred callbacks for the listening engine (capture countdown, backend restarts)."""

import threading
from typing import Callable, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """Run callback once after delay seconds, on some other thread."""
        ...


class ThreadingScheduler:
    """One daemon threading.Timer per scheduled callback."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        timer.name = f"hark-timer-{delay:g}s"
        timer.start()
        return timer
