"""Bounded-concurrency dispatch of pending checkpoint segments.

One FIFO queue is filled with the pending segments followed by one ``None``
sentinel per worker. Each worker thread submits segments until it takes a
sentinel. A failing segment is logged and recorded; it never stops its worker
or its siblings. The queue and workers belong to a single call.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from .splits import Segment, SegmentState

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    succeeded: List[int] = field(default_factory=list)
    failed: Dict[int, str] = field(default_factory=dict)

    @property
    def all_succeeded(self) -> bool:
        return not self.failed


def dispatch_segments(
    segments: Sequence[Segment],
    submit: Callable[[Segment], object],
    *,
    concurrency: int,
) -> DispatchResult:
    """Run ``submit`` over ``segments`` with at most ``concurrency`` in flight.

    Blocks until every worker has exited.
    """

    result = DispatchResult()
    if not segments:
        return result

    workers = max(1, min(int(concurrency or 1), len(segments)))
    work: "queue.Queue[Optional[Segment]]" = queue.Queue()
    lock = threading.Lock()

    for segment in segments:
        work.put(segment)
    for _ in range(workers):
        work.put(None)

    def _worker() -> None:
        name = threading.current_thread().name
        while True:
            segment = work.get()
            if segment is None:
                logger.debug(f"{name}: got shutdown item, exiting")
                return

            logger.info(f"{name}: starting segment {segment.segment_id}")
            segment.state = SegmentState.RUNNING
            try:
                submit(segment)
            except Exception as e:
                segment.state = SegmentState.PENDING
                logger.error(f"{name}: segment {segment.segment_id} failed: {e}")
                with lock:
                    result.failed[segment.segment_id] = str(e)
            else:
                segment.state = SegmentState.SUCCEEDED
                with lock:
                    result.succeeded.append(segment.segment_id)

    logger.info(f"Starting {workers} dispatch worker(s) for {len(segments)} segment(s)")
    threads = [
        threading.Thread(target=_worker, name=f"dispatch-{i}", daemon=True) for i in range(workers)
    ]
    for t in threads:
        t.start()

    logger.info("Waiting for dispatch workers to finish")
    for t in threads:
        t.join()

    logger.info(f"Dispatch complete: {len(result.succeeded)} succeeded, {len(result.failed)} failed")
    return result
