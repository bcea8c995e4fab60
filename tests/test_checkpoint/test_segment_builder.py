"""Tests for re-chunking, packing and segment persistence."""

import pytest

from commoncrawl_parse.checkpoint.errors import CheckpointConstructionError
from commoncrawl_parse.checkpoint.ledger import read_range_manifest
from commoncrawl_parse.checkpoint.segment_builder import (
    build_checkpoint_segments,
    chunk_count,
    pack,
    rechunk,
    rechunk_range,
)
from commoncrawl_parse.checkpoint.splits import ByteRange, SplitRecord


def test_rechunk_remainder_of_exactly_half_gets_own_chunk():
    chunks = rechunk_range(ByteRange("s3n://h/a", 0, 2_500_000), 1_000_000)
    assert [c.length for c in chunks] == [1_000_000, 1_000_000, 500_000]
    assert [c.offset for c in chunks] == [0, 1_000_000, 2_000_000]


def test_rechunk_small_remainder_folds_into_last_chunk():
    chunks = rechunk_range(ByteRange("s3n://h/a", 10, 2_400_000), 1_000_000)
    assert [c.length for c in chunks] == [1_000_000, 1_400_000]
    assert chunks[-1].end == 2_400_010


def test_rechunk_short_range_yields_single_chunk():
    assert rechunk_range(ByteRange("s3n://h/a", 7, 3), 1_000_000) == [ByteRange("s3n://h/a", 7, 3)]


@pytest.mark.parametrize(
    "length, split_size, expected",
    [(4, 3, 1), (5, 3, 2), (7, 5, 1), (8, 5, 2), (3, 1, 3), (1, 1, 1)],
)
def test_half_chunk_rule_is_exact_for_odd_sizes(length, split_size, expected):
    assert chunk_count(length, split_size) == expected


@pytest.mark.parametrize("length", [1, 2, 3, 7, 10, 99, 100, 101, 149, 150, 151, 1000, 1049])
@pytest.mark.parametrize("split_size", [1, 2, 3, 50, 100, 1000])
def test_rechunk_covers_range_exactly(length, split_size):
    r = ByteRange("s3n://h/a", 1234, length)
    chunks = rechunk_range(r, split_size)
    assert len(chunks) == chunk_count(length, split_size) >= 1
    assert chunks[0].offset == r.offset
    for prev, cur in zip(chunks, chunks[1:]):
        assert prev.end == cur.offset
        assert prev.length == split_size
    assert chunks[-1].end == r.end
    assert all(c.length > 0 for c in chunks)


def test_rechunk_uses_resume_range_for_partial_splits():
    original = ByteRange("s3n://h/a", 0, 1000)
    records = [
        SplitRecord(1, 4, original, ByteRange("s3n://h/a", 900, 100)),
        SplitRecord(1, 2, ByteRange("s3n://h/b", 0, 250)),
    ]
    assert rechunk(records, 100) == [
        ByteRange("s3n://h/a", 900, 100),
        ByteRange("s3n://h/b", 0, 100),
        ByteRange("s3n://h/b", 100, 150),
    ]


@pytest.mark.parametrize("m,k", [(0, 3), (1, 3), (3, 3), (7, 3), (10, 1), (5, 10)])
def test_pack_partitions_in_order(m, k):
    ranges = [ByteRange("s3n://h/a", i * 10, 10) for i in range(m)]
    groups = pack(ranges, k)
    assert len(groups) == -(-m // k)
    assert all(1 <= len(g) <= k for g in groups)
    assert [r for g in groups for r in g] == ranges


def test_pack_rejects_zero_group_size():
    with pytest.raises(ValueError):
        pack([], 0)


def test_build_persists_one_manifest_per_segment(store):
    records = [SplitRecord(1, i, ByteRange("s3n://h/a", i * 100, 100)) for i in range(5)]
    segments = build_checkpoint_segments(
        store, 5000, records, base_segment_id=1000, split_size=100, splits_per_segment=2
    )
    assert [s.segment_id for s in segments] == [1000, 1001, 1002]
    assert store.list("checkpoint_staging/5000") == ["1000", "1001", "1002"]
    for s in segments:
        assert s.checkpoint_id == 5000
        assert read_range_manifest(store, f"checkpoint_staging/5000/{s.segment_id}/splits.txt") == s.manifest


def test_build_rejects_checkpoints_too_large_for_id_space(store):
    records = [SplitRecord(1, 0, ByteRange("s3n://h/a", 0, 10_000))]
    with pytest.raises(CheckpointConstructionError):
        build_checkpoint_segments(store, 1, records, base_segment_id=0, split_size=1, splits_per_segment=1)
