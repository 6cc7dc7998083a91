import threading
import time

import pytest

from txclassify.cancellation import Cancellation
from txclassify.pmap import p_map, p_map_skip


def test_preserves_input_order():
    def slow_square(x):
        time.sleep(0.01 * (5 - x))
        return x * x

    assert p_map(range(5), slow_square, concurrency=3) == [0, 1, 4, 9, 16]


def test_bounds_inflight_calls():
    lock = threading.Lock()
    inflight = 0
    peak = 0

    def work(_):
        nonlocal inflight, peak
        with lock:
            inflight += 1
            peak = max(peak, inflight)
        time.sleep(0.02)
        with lock:
            inflight -= 1

    p_map(range(10), work, concurrency=2)
    assert peak <= 2


def test_skip_sentinel_drops_items():
    assert p_map(range(6), lambda x: p_map_skip if x % 2 else x, concurrency=2) == [0, 2, 4]


def test_stop_on_error_raises_first_error():
    def fail_on_two(x):
        if x == 2:
            raise ValueError("two")
        return x

    with pytest.raises(ValueError, match="two"):
        p_map(range(4), fail_on_two, concurrency=1)


def test_collects_all_errors_when_not_stopping():
    def fail_odd(x):
        if x % 2:
            raise ValueError(str(x))
        return x

    with pytest.raises(ExceptionGroup) as ei:
        p_map(range(5), fail_odd, concurrency=2, stop_on_error=False)
    assert sorted(str(e) for e in ei.value.exceptions) == ["1", "3"]


def test_cancellation_stops_new_submissions():
    cancel = Cancellation()
    seen = []

    def work(x):
        seen.append(x)
        if x == 1:
            cancel.cancel()
        return x

    out = p_map(range(10), work, concurrency=1, cancellation=cancel)
    assert out == [0, 1]
    assert seen == [0, 1]


@pytest.mark.parametrize("bad", [0, -1, 1.5])
def test_rejects_invalid_concurrency(bad):
    with pytest.raises(ValueError):
        p_map([1], lambda x: x, concurrency=bad)
