import pytest

from gpumonitor.core.window import DEFAULT_MAX_DATA_POINTS, SampleWindow


def test_window_keeps_most_recent_in_arrival_order() -> None:
    window: SampleWindow[int] = SampleWindow()
    for start in range(0, 250, 50):
        window.extend(range(start, start + 50))
    assert DEFAULT_MAX_DATA_POINTS == 100
    assert len(window) == 100
    assert window.to_list() == list(range(150, 250))
    assert window.latest() == 249


def test_window_extend_and_clear() -> None:
    window: SampleWindow[str] = SampleWindow(3)
    window.extend(["a", "b"])
    window.extend(["c", "d"])
    assert list(window) == ["b", "c", "d"]
    assert window.capacity == 3
    window.clear()
    assert len(window) == 0
    assert window.latest() is None


def test_window_rejects_non_positive_capacity() -> None:
    with pytest.raises(ValueError):
        SampleWindow(0)
