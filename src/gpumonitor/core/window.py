from __future__ import annotations

from collections import deque
from typing import Generic, Iterable, Iterator, TypeVar

DEFAULT_MAX_DATA_POINTS = 100

T = TypeVar("T")


class SampleWindow(Generic[T]):
    """Most recent ``capacity`` samples in arrival order; oldest evicted first."""

    def __init__(self, capacity: int = DEFAULT_MAX_DATA_POINTS) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be > 0, got {capacity}")
        self._items: deque[T] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._items.maxlen or 0

    def extend(self, samples: Iterable[T]) -> None:
        self._items.extend(samples)

    def clear(self) -> None:
        self._items.clear()

    def latest(self) -> T | None:
        return self._items[-1] if self._items else None

    def to_list(self) -> list[T]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(self._items)
