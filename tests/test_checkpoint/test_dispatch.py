"""Tests for the bounded-concurrency dispatch loop."""

import threading
import time

from commoncrawl_parse.checkpoint.dispatch import dispatch_segments
from commoncrawl_parse.checkpoint.splits import Segment, SegmentState


def _segments(n):
    return [Segment(segment_id=i, checkpoint_id=99) for i in range(n)]


def test_every_segment_is_submitted_once():
    seen = []
    lock = threading.Lock()

    def submit(segment):
        with lock:
            seen.append(segment.segment_id)

    result = dispatch_segments(_segments(25), submit, concurrency=4)
    assert sorted(seen) == list(range(25))
    assert sorted(result.succeeded) == list(range(25))
    assert result.all_succeeded


def test_concurrency_is_bounded():
    in_flight = 0
    peak = 0
    lock = threading.Lock()

    def submit(segment):
        nonlocal in_flight, peak
        with lock:
            in_flight += 1
            peak = max(peak, in_flight)
        time.sleep(0.02)
        with lock:
            in_flight -= 1

    dispatch_segments(_segments(12), submit, concurrency=3)
    assert 1 <= peak <= 3


def test_failures_are_isolated_per_segment():
    segments = _segments(6)

    def submit(segment):
        if segment.segment_id % 2:
            raise RuntimeError(f"boom {segment.segment_id}")

    result = dispatch_segments(segments, submit, concurrency=2)
    assert sorted(result.succeeded) == [0, 2, 4]
    assert sorted(result.failed) == [1, 3, 5]
    assert "boom 3" in result.failed[3]
    assert not result.all_succeeded
    assert [s.state for s in segments] == [SegmentState.SUCCEEDED, SegmentState.PENDING] * 3


def test_single_worker_preserves_fifo_order():
    order = []
    dispatch_segments(_segments(5), lambda s: order.append(s.segment_id), concurrency=1)
    assert order == [0, 1, 2, 3, 4]


def test_empty_pending_list_returns_immediately():
    result = dispatch_segments([], lambda s: None, concurrency=8)
    assert result.succeeded == [] and result.failed == {}
