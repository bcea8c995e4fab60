"""Repack outstanding splits into new checkpoint segments.

Two passes:

1. Re-chunk every outstanding split (its resume range when partial, otherwise
   its original range) into contiguous sub-ranges of ``split_size`` bytes. A
   trailing remainder of at least half a chunk becomes its own sub-range;
   smaller remainders are folded into the last chunk. The half is exact
   (``2 * rem >= split_size``), not ``split_size // 2``: with an odd size of 3
   a 4-byte range is one chunk, and a size of 1 never yields an empty chunk.
2. Partition the resulting sequence, in order, into groups of at most
   ``splits_per_segment`` sub-ranges. Each group becomes one segment whose
   manifest is written under the staging area.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Sequence

from .errors import CheckpointConstructionError
from .ledger import format_range_manifest
from .splits import ByteRange, Segment, SplitRecord
from .store import SPLITS_MANIFEST_FILE, CheckpointStore, join, staged_segment_dir

logger = logging.getLogger(__name__)

# Checkpoint ids are derived as base_id + CHECKPOINT_ID_OFFSET, so a single
# construction must stay below this many segments.
CHECKPOINT_ID_OFFSET = 10000


def chunk_count(length: int, split_size: int) -> int:
    n = length // split_size
    if n == 0 or 2 * (length % split_size) >= split_size:
        n += 1
    return n


def rechunk_range(r: ByteRange, split_size: int) -> List[ByteRange]:
    """Split ``r`` into ``chunk_count`` sub-ranges covering it exactly.

    Regular chunks are ``split_size`` bytes; the last one takes whatever is left.
    """

    if split_size < 1:
        raise ValueError(f"split_size must be >= 1 (got {split_size})")
    if r.length == 0:
        return []

    n = chunk_count(r.length, split_size)
    out: List[ByteRange] = []
    offset = r.offset
    remaining = r.length
    for i in range(n):
        size = remaining if i == n - 1 else split_size
        out.append(ByteRange(r.source_path, offset, size))
        offset += size
        remaining -= size
    return out


def rechunk(records: Iterable[SplitRecord], split_size: int) -> List[ByteRange]:
    out: List[ByteRange] = []
    for rec in records:
        work = rec.work_range
        if work.length == 0:
            logger.debug(f"Skipping empty work range for segment {rec.segment_id} split {rec.split_index}")
            continue
        out.extend(rechunk_range(work, split_size))
    return out


def pack(ranges: Sequence[ByteRange], splits_per_segment: int) -> List[List[ByteRange]]:
    if splits_per_segment < 1:
        raise ValueError(f"splits_per_segment must be >= 1 (got {splits_per_segment})")
    return [list(ranges[i : i + splits_per_segment]) for i in range(0, len(ranges), splits_per_segment)]


def build_checkpoint_segments(
    store: CheckpointStore,
    checkpoint_id: int,
    records: Sequence[SplitRecord],
    *,
    base_segment_id: int,
    split_size: int,
    splits_per_segment: int,
) -> List[Segment]:
    """Re-chunk, pack and persist the segments of a new checkpoint.

    Segment ids are ``base_segment_id + ordinal``. A failure part way through
    leaves already-written siblings untouched; the caller discards the whole
    staging area.
    """

    groups = pack(rechunk(records, split_size), splits_per_segment)
    if len(groups) >= CHECKPOINT_ID_OFFSET:
        raise CheckpointConstructionError(
            f"Checkpoint {checkpoint_id} would need {len(groups)} segments "
            f"(limit {CHECKPOINT_ID_OFFSET - 1}); raise splits_per_segment or split_size"
        )

    segments: List[Segment] = []
    for ordinal, group in enumerate(groups):
        segment_id = base_segment_id + ordinal
        path = join(staged_segment_dir(checkpoint_id, segment_id), SPLITS_MANIFEST_FILE)
        store.write(path, format_range_manifest(group))
        segments.append(Segment(segment_id=segment_id, checkpoint_id=checkpoint_id, manifest=group))

    total_bytes = sum(r.length for g in groups for r in g)
    logger.info(
        f"Built {len(segments)} segment(s) for checkpoint {checkpoint_id} "
        f"from {len(records)} split(s), {total_bytes:,} bytes"
    )
    return segments
