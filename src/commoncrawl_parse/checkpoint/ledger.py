"""Split ledger reader.

Each processed segment carries up to three newline-delimited manifests:

  all      scheme://path:offset+length
  failed   index,scheme://path:offset+length
  partial  index,scheme://path:resumeOffset+resumeLength,scheme://path:originalOffset+originalLength

Blank lines and ``#`` comments are skipped. Any other line that does not match
its kind's grammar aborts the whole read with ``MalformedManifestError``.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, List, Optional

from .errors import MalformedManifestError
from .splits import ByteRange, ManifestKind, SplitRecord
from .store import CheckpointStore, join, valid_segment_dir

logger = logging.getLogger(__name__)

_FAILED_LINE_RX = re.compile(r"^([0-9]+),(.*)$")
_PARTIAL_LINE_RX = re.compile(r"^([0-9]+),([^,]*),([^,]*)$")


def _significant_lines(text: str) -> Iterable[tuple[int, str]]:
    for line_no, raw in enumerate(text.splitlines(), 1):
        line = raw.rstrip("\r")
        if not line or line.startswith("#"):
            continue
        yield line_no, line


def parse_split_line(segment_id: int, line: str, kind: ManifestKind, *, index: int = 0) -> SplitRecord:
    """Parse one significant manifest line. Raises ValueError on bad input.

    ``index`` is only used for the ``all`` kind, whose lines carry no explicit
    split index.
    """

    if kind is ManifestKind.ALL:
        return SplitRecord(segment_id=segment_id, split_index=index, original_range=ByteRange.parse(line))

    if kind is ManifestKind.FAILED:
        m = _FAILED_LINE_RX.match(line)
        if not m:
            raise ValueError(f"Invalid failed split line: {line!r}")
        return SplitRecord(
            segment_id=segment_id,
            split_index=int(m.group(1)),
            original_range=ByteRange.parse(m.group(2)),
        )

    m = _PARTIAL_LINE_RX.match(line)
    if not m:
        raise ValueError(f"Invalid partial split line: {line!r}")
    return SplitRecord(
        segment_id=segment_id,
        split_index=int(m.group(1)),
        resume_range=ByteRange.parse(m.group(2)),
        original_range=ByteRange.parse(m.group(3)),
    )


def parse_split_manifest(
    text: str,
    segment_id: int,
    kind: ManifestKind,
    *,
    path: Optional[str] = None,
) -> List[SplitRecord]:
    """Parse manifest text into records ordered by split index.

    Duplicate indices collapse; the later line wins.
    """

    by_index: Dict[int, SplitRecord] = {}
    position = 0
    for line_no, line in _significant_lines(text):
        try:
            rec = parse_split_line(segment_id, line, kind, index=position)
        except ValueError as e:
            raise MalformedManifestError(str(e), path=path, line_no=line_no) from e
        position += 1
        by_index[rec.split_index] = rec
    return [by_index[i] for i in sorted(by_index)]


def read_split_records(
    store: CheckpointStore,
    segment_id: int,
    kind: ManifestKind,
    *,
    segment_dir: Optional[str] = None,
) -> List[SplitRecord]:
    """Read one of a segment's manifests from the store.

    A missing manifest reads as empty: segments without failures do not always
    write failed/trailing logs.
    """

    path = join(segment_dir or valid_segment_dir(segment_id), kind.file_name)
    if not store.exists(path):
        logger.debug(f"No {kind.value} manifest for segment {segment_id} at {path}")
        return []
    return parse_split_manifest(store.read(path), segment_id, kind, path=path)


def read_range_manifest(store: CheckpointStore, path: str) -> List[ByteRange]:
    """Read a plain range manifest in file order."""

    ranges: List[ByteRange] = []
    for line_no, line in _significant_lines(store.read(path)):
        try:
            ranges.append(ByteRange.parse(line))
        except ValueError as e:
            raise MalformedManifestError(str(e), path=path, line_no=line_no) from e
    return ranges


def format_range_manifest(ranges: Iterable[ByteRange]) -> str:
    return "".join(f"{r}\n" for r in ranges)


def format_audit_record(records: Iterable[SplitRecord]) -> str:
    lines = ["# segment_id,split_index,P|F,range"]
    lines.extend(r.to_audit_line() for r in records)
    return "\n".join(lines) + "\n"
