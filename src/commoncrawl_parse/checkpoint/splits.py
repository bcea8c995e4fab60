"""Typed records for splits, segments and checkpoints.

Range text format (manifest lines):
  scheme://path:offset+length

e.g. ``s3n://aws-publicdatasets/common-crawl/crawl-data/x.gz:134217728+67108864``
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from functools import total_ordering
from typing import List, Optional, Tuple

_RANGE_RX = re.compile(r"^([^:]*)://([^:]*):(\d+)\+(\d+)$")


@total_ordering
@dataclass(frozen=True)
class ByteRange:
    source_path: str
    offset: int
    length: int

    def __post_init__(self):
        if self.offset < 0 or self.length < 0:
            raise ValueError(f"Negative offset/length in range: {self.offset}+{self.length}")

    @classmethod
    def parse(cls, text: str) -> "ByteRange":
        m = _RANGE_RX.match(text.strip())
        if not m:
            raise ValueError(f"Invalid range: {text!r}")
        return cls(
            source_path=f"{m.group(1)}://{m.group(2)}",
            offset=int(m.group(3)),
            length=int(m.group(4)),
        )

    @property
    def end(self) -> int:
        return self.offset + self.length

    def sort_key(self) -> Tuple[str, int]:
        return (self.source_path, self.offset)

    def __lt__(self, other: "ByteRange") -> bool:
        if not isinstance(other, ByteRange):
            return NotImplemented
        return self.sort_key() < other.sort_key()

    def __str__(self) -> str:
        return f"{self.source_path}:{self.offset}+{self.length}"


class ManifestKind(Enum):
    ALL = "all"
    FAILED = "failed"
    PARTIAL = "partial"

    @property
    def file_name(self) -> str:
        return MANIFEST_FILE_NAMES[self]


MANIFEST_FILE_NAMES = {
    ManifestKind.ALL: "splits.txt",
    ManifestKind.FAILED: "failed_splits.txt",
    ManifestKind.PARTIAL: "trailing_splits.txt",
}


@dataclass(frozen=True)
class SplitRecord:
    """One logical unit of original work.

    A record carrying ``resume_range`` is a partial split: only that residual
    tail is rescheduled.
    """

    segment_id: int
    split_index: int
    original_range: ByteRange
    resume_range: Optional[ByteRange] = None

    @property
    def is_partial(self) -> bool:
        return self.resume_range is not None

    @property
    def work_range(self) -> ByteRange:
        return self.resume_range if self.resume_range is not None else self.original_range

    def to_audit_line(self) -> str:
        kind = "P" if self.is_partial else "F"
        return f"{self.segment_id},{self.split_index},{kind},{self.work_range}"


class SegmentState(Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"


@dataclass
class Segment:
    segment_id: int
    checkpoint_id: int
    manifest: List[ByteRange] = field(default_factory=list)
    state: SegmentState = SegmentState.PENDING


class CheckpointState(Enum):
    STAGED = "staged"
    COMMITTED = "committed"


@dataclass
class Checkpoint:
    checkpoint_id: int
    state: CheckpointState
    segments: List[Segment] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return all(s.state is SegmentState.SUCCEEDED for s in self.segments)
