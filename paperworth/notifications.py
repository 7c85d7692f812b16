# paperworth/notifications.py
import logging
import math
import threading
from typing import Callable, Optional

logger = logging.getLogger("paperworth.notifications")


class NotificationTimer:
    """Success banner that counts down from 100 and hides itself at 0.

    With the defaults (-2 every 100ms) the banner is dismissed after 50 ticks, i.e. 5 seconds.
    A new show() cancels any countdown still running. With auto_start=False nothing ticks
    on its own; the caller ticks or polls remaining_after().
    """

    def __init__(self, start: int = 100, step: int = 2, interval: float = 0.1, auto_start: bool = True,
                 on_dismiss: Optional[Callable[[], None]] = None):
        self.start = start
        self.step = step
        self.interval = interval
        self.on_dismiss = on_dismiss
        self.auto_start = auto_start
        self.message = ""
        self.visible = False
        self.remaining = 0
        self._timer: Optional[threading.Timer] = None
        self._generation = 0
        self._lock = threading.RLock()

    @property
    def ticks_to_dismiss(self) -> int:
        return math.ceil(self.start / self.step)

    @property
    def duration(self) -> float:
        return self.ticks_to_dismiss * self.interval

    def remaining_after(self, elapsed: float) -> int:
        """Countdown value after `elapsed` seconds, for drivers that poll instead of ticking."""
        ticks = int(round(elapsed / self.interval, 6))
        return max(self.start - ticks * self.step, 0)

    def show(self, message: str, auto_start: Optional[bool] = None):
        with self._lock:
            self._cancel()
            self.message = message
            self.visible = True
            self.remaining = self.start
            if auto_start is None:
                auto_start = self.auto_start
            if auto_start:
                self._schedule(self._generation)

    def tick(self) -> bool:
        """Advance one step. Returns False once the banner has been dismissed."""
        with self._lock:
            if not self.visible:
                return False
            self.remaining -= self.step
            if self.remaining <= 0:
                self.remaining = 0
                self._dismiss()
                return False
            return True

    def close(self):
        with self._lock:
            self._cancel()
            self._dismiss()

    def _dismiss(self):
        was_visible = self.visible
        self.visible = False
        if was_visible and self.on_dismiss:
            self.on_dismiss()

    def _cancel(self):
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _schedule(self, generation: int):
        self._timer = threading.Timer(self.interval, self._run, args=(generation,))
        self._timer.daemon = True
        self._timer.start()

    def _run(self, generation: int):
        with self._lock:
            # a newer show() or close() owns the countdown now
            if generation != self._generation:
                return
            if self.tick():
                self._schedule(generation)
