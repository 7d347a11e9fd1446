"""
Timer primitives for the session lifecycle.

A scheduler hands out handles with an idempotent cancel(). The threading
implementation runs callbacks on daemon threads; tests swap in a manual one.
"""
import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)


class TimerHandle:
    def cancel(self) -> None:
        raise NotImplementedError

    @property
    def active(self) -> bool:
        raise NotImplementedError


class Scheduler:
    def call_later(self, delay: float, fn: Callable[[], None]) -> TimerHandle:
        raise NotImplementedError

    def call_every(self, interval: float, fn: Callable[[], None]) -> TimerHandle:
        raise NotImplementedError


def _run_safely(fn):
    try:
        fn()
    except Exception:
        logger.exception("Scheduled callback %r failed", fn)


class _OneShot(TimerHandle):
    def __init__(self, delay, fn):
        self._fired = threading.Event()

        def _fire():
            self._fired.set()
            _run_safely(fn)

        self._timer = threading.Timer(delay, _fire)
        self._timer.daemon = True
        self._timer.start()

    def cancel(self):
        self._timer.cancel()
        self._fired.set()

    @property
    def active(self):
        return not self._fired.is_set()


class _Repeating(TimerHandle):
    def __init__(self, interval, fn):
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._loop, args=(interval, fn), daemon=True)
        self._thread.start()

    def _loop(self, interval, fn):
        while not self._stop.wait(interval):
            _run_safely(fn)

    def cancel(self):
        self._stop.set()

    @property
    def active(self):
        return not self._stop.is_set()


class ThreadingScheduler(Scheduler):
    def call_later(self, delay, fn):
        return _OneShot(delay, fn)

    def call_every(self, interval, fn):
        return _Repeating(interval, fn)
