import pytest

from ingest.history import HistoryRing
from ingest.models import TvlPoint, percent_change


def _point(ts, tvl=100.0):
    return TvlPoint(timestamp=ts, total_tvl=tvl)


def test_capacity_must_allow_a_window():
    with pytest.raises(ValueError):
        HistoryRing(1)


def test_oldest_points_are_evicted_at_capacity():
    ring = HistoryRing(3)
    for ts in range(1, 6):
        assert ring.append(_point(ts))

    assert len(ring) == 3
    assert [p.timestamp for p in ring] == [3, 4, 5]


def test_non_increasing_timestamps_are_dropped():
    ring = HistoryRing(10)
    assert ring.append(_point(10))
    assert not ring.append(_point(10))
    assert not ring.append(_point(5))
    assert ring.append(_point(11))

    timestamps = [p.timestamp for p in ring.points()]
    assert timestamps == sorted(set(timestamps))
    assert ring.latest().timestamp == 11


def test_window_needs_two_points():
    ring = HistoryRing(10)
    assert ring.window(now=100, minutes=60) is None
    ring.append(_point(100))
    assert ring.window(now=100, minutes=60) is None


def test_window_uses_earliest_point_inside_cutoff():
    ring = HistoryRing(10)
    now = 10_000
    for ts, tvl in [(now - 7200, 1.0), (now - 3000, 2.0), (now - 600, 3.0), (now, 4.0)]:
        ring.append(_point(ts, tvl))

    old, current = ring.window(now=now, minutes=60)

    assert old.total_tvl == 2.0
    assert current.total_tvl == 4.0


def test_window_returns_none_when_everything_is_stale():
    ring = HistoryRing(10)
    ring.append(_point(0))
    ring.append(_point(10))
    assert ring.window(now=100_000, minutes=60) is None


def test_percent_change_guards_zero_baseline():
    assert percent_change(50.0, 0.0) == 0.0
    assert percent_change(150.0, 100.0) == pytest.approx(50.0)
    assert percent_change(80.0, 100.0) == pytest.approx(-20.0)
