#!/usr/bin/env python3
from collections import deque
from typing import Deque, Generic, Iterator, List, Optional, Protocol, Tuple, TypeVar

from constants import HISTORY_CAPACITY


class _Timestamped(Protocol):
    timestamp: float


T = TypeVar('T', bound=_Timestamped)


class HistoryRing(Generic[T]):
    """Fixed-capacity, strictly timestamp-ascending buffer. Oldest points are evicted first."""

    def __init__(self, capacity: int = HISTORY_CAPACITY):
        if capacity < 2:
            raise ValueError("History capacity must be at least 2")
        self._points: Deque[T] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._points.maxlen

    def append(self, point: T) -> bool:
        """Appends `point`; a point not newer than the latest one is dropped and False is returned."""
        if self._points and point.timestamp <= self._points[-1].timestamp:
            return False
        self._points.append(point)
        return True

    def latest(self) -> Optional[T]:
        return self._points[-1] if self._points else None

    def window(self, now: float, minutes: int) -> Optional[Tuple[T, T]]:
        """(earliest point at or after `now - minutes`, latest point), or None if that can't be answered."""
        if len(self._points) < 2:
            return None
        cutoff = now - minutes * 60
        oldest = next((p for p in self._points if p.timestamp >= cutoff), None)
        if oldest is None:
            return None
        return oldest, self._points[-1]

    def points(self) -> List[T]:
        return list(self._points)

    def __len__(self) -> int:
        return len(self._points)

    def __iter__(self) -> Iterator[T]:
        return iter(self._points)
