import pytest

from gpumonitor.core.timer import DeadlineTimer, ManualTimer, SleepTimer


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.slept: list[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.slept.append(seconds)
        self.now += seconds


def test_sleep_timer_runs_max_ticks() -> None:
    clock = FakeClock()
    timer = SleepTimer(sleep=clock.sleep, monotonic=clock.monotonic)
    calls = []
    timer.start(0.25, lambda: calls.append(clock.now))
    assert timer.run(max_ticks=3) == 3
    assert len(calls) == 3
    assert calls[0] == pytest.approx(0.25)
    assert calls[2] == pytest.approx(0.75)
    assert max(clock.slept) <= 0.1 + 1e-9


def test_sleep_timer_cancel_from_callback_stops_loop() -> None:
    clock = FakeClock()
    timer = SleepTimer(sleep=clock.sleep, monotonic=clock.monotonic)
    calls = []

    def _tick() -> None:
        calls.append(1)
        if len(calls) == 2:
            timer.cancel()

    timer.start(0.0, _tick)
    timer.run()
    assert len(calls) == 2
    assert not timer.active


def test_sleep_timer_tolerates_interrupted_sleep() -> None:
    clock = FakeClock()
    interrupted = []

    def _sleep(seconds: float) -> None:
        if not interrupted:
            interrupted.append(seconds)
            raise InterruptedError()
        clock.sleep(seconds)

    timer = SleepTimer(sleep=_sleep, monotonic=clock.monotonic)
    calls = []
    timer.start(0.2, lambda: calls.append(1))
    timer.run(max_ticks=1)
    assert calls == [1]


def test_sleep_timer_rejects_negative_interval() -> None:
    with pytest.raises(ValueError):
        SleepTimer().start(-1, lambda: None)


def test_manual_timer_fire_and_cancel() -> None:
    timer = ManualTimer()
    calls = []
    assert timer.fire() is False
    timer.start(5.0, lambda: calls.append(1))
    assert timer.interval_s == 5.0
    assert timer.fire() is True
    timer.cancel()
    assert timer.fire() is False
    assert calls == [1]


def test_deadline_timer_fires_when_due() -> None:
    clock = FakeClock()
    timer = DeadlineTimer(monotonic=clock.monotonic)
    calls = []
    assert timer.seconds_until_due() is None
    timer.start(2.0, lambda: calls.append(clock.now))
    assert timer.seconds_until_due() == 2.0
    assert timer.fire_if_due() is False
    clock.now = 2.5
    assert timer.seconds_until_due() == 0.0
    assert timer.fire_if_due() is True
    assert timer.seconds_until_due() == 2.0
    # Missed slots are not replayed.
    clock.now = 20.0
    assert timer.fire_if_due() is True
    assert timer.fire_if_due() is False
    assert calls == [2.5, 20.0]
    timer.cancel()
    assert timer.seconds_until_due() is None
