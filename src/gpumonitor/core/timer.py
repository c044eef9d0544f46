from __future__ import annotations

import errno
import time
from dataclasses import dataclass, field
from typing import Callable

_SLEEP_SLICE_S = 0.1


class IntervalTimer:
    def start(self, interval_s: float, callback: Callable[[], None]) -> None:
        raise NotImplementedError

    def cancel(self) -> None:
        raise NotImplementedError

    @property
    def active(self) -> bool:
        raise NotImplementedError


def _sleep_quietly(sleep: Callable[[float], None], seconds: float) -> None:
    try:
        sleep(seconds)
    except InterruptedError:
        pass
    except OSError as exc:
        if exc.errno != errno.EINTR:
            raise


@dataclass
class SleepTimer(IntervalTimer):
    """Blocking timer that drives its callback from the thread calling ``run``.

    Sleeps in short slices so a ``cancel`` from a signal handler ends the
    wait promptly.
    """

    sleep: Callable[[float], None] = time.sleep
    monotonic: Callable[[], float] = time.monotonic
    ticks: int = 0
    _interval_s: float = 0.0
    _callback: Callable[[], None] | None = field(default=None, repr=False)
    _active: bool = False

    @property
    def active(self) -> bool:
        return self._active

    def start(self, interval_s: float, callback: Callable[[], None]) -> None:
        if interval_s < 0:
            raise ValueError(f"interval must be >= 0, got {interval_s}")
        self._interval_s = float(interval_s)
        self._callback = callback
        self._active = True

    def cancel(self) -> None:
        self._active = False
        self._callback = None

    def _wait(self) -> None:
        deadline = self.monotonic() + self._interval_s
        while self._active:
            remaining = deadline - self.monotonic()
            if remaining <= 0:
                return
            _sleep_quietly(self.sleep, min(_SLEEP_SLICE_S, remaining))

    def run(self, max_ticks: int | None = None) -> int:
        while self._active:
            if max_ticks is not None and self.ticks >= max_ticks:
                break
            self._wait()
            callback = self._callback
            if not self._active or callback is None:
                break
            callback()
            self.ticks += 1
        return self.ticks


@dataclass
class ManualTimer(IntervalTimer):
    interval_s: float | None = None
    fired: int = 0
    _callback: Callable[[], None] | None = field(default=None, repr=False)

    @property
    def active(self) -> bool:
        return self._callback is not None

    def start(self, interval_s: float, callback: Callable[[], None]) -> None:
        self.interval_s = interval_s
        self._callback = callback

    def cancel(self) -> None:
        self._callback = None

    def fire(self) -> bool:
        callback = self._callback
        if callback is None:
            return False
        callback()
        self.fired += 1
        return True


@dataclass
class DeadlineTimer(IntervalTimer):
    """Timer for event loops that wait on something else between ticks.

    The loop asks ``seconds_until_due`` for its wait timeout and calls
    ``fire_if_due`` after every wakeup.
    """

    monotonic: Callable[[], float] = time.monotonic
    fired: int = 0
    _interval_s: float = 0.0
    _deadline: float | None = None
    _callback: Callable[[], None] | None = field(default=None, repr=False)

    @property
    def active(self) -> bool:
        return self._callback is not None

    def start(self, interval_s: float, callback: Callable[[], None]) -> None:
        if interval_s < 0:
            raise ValueError(f"interval must be >= 0, got {interval_s}")
        self._interval_s = float(interval_s)
        self._callback = callback
        self._deadline = self.monotonic() + self._interval_s

    def cancel(self) -> None:
        self._callback = None
        self._deadline = None

    def seconds_until_due(self) -> float | None:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self.monotonic())

    def fire_if_due(self) -> bool:
        callback = self._callback
        if callback is None or self._deadline is None:
            return False
        now = self.monotonic()
        if now < self._deadline:
            return False
        # Skip missed slots instead of bursting to catch up.
        self._deadline = now + self._interval_s
        callback()
        self.fired += 1
        return True
