"""Decide which splits of a processed segment still need work."""

from __future__ import annotations

import re
import statistics
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from .splits import SplitRecord

_ARC_FILE_RX = re.compile(r"^([0-9]+)_([0-9]+)\.arc\.gz$")


def classify_outstanding(
    all_splits: Sequence[SplitRecord],
    failed: Sequence[SplitRecord],
    partial: Sequence[SplitRecord],
) -> List[SplitRecord]:
    """Return the records requiring resubmission for one segment.

    Every partial record is emitted (it resumes from its cutoff), followed by
    failed records whose index is not also partial. Splits in neither set are
    complete and dropped. ``all_splits`` does not affect eligibility.
    """

    partial_by_index: Dict[int, SplitRecord] = {}
    for rec in partial:
        partial_by_index[rec.split_index] = rec

    really_failed: Dict[int, SplitRecord] = {}
    for rec in failed:
        if rec.split_index not in partial_by_index:
            really_failed[rec.split_index] = rec

    out = [partial_by_index[i] for i in sorted(partial_by_index)]
    out.extend(really_failed[i] for i in sorted(really_failed))
    return out


def arc_sizes_by_split(names_and_sizes: Iterable[tuple[str, int]]) -> Dict[int, List[int]]:
    """Group ``<n>_<split>.arc.gz`` artifact sizes by split index."""

    out: Dict[int, List[int]] = {}
    for name, size in names_and_sizes:
        m = _ARC_FILE_RX.match(name)
        if m:
            out.setdefault(int(m.group(2)), []).append(int(size))
    return out


@dataclass(frozen=True)
class OutputRatioStats:
    samples: int
    mean: Optional[float]
    stdev: Optional[float]


def output_to_raw_ratio(
    all_splits: Sequence[SplitRecord],
    failed: Sequence[SplitRecord],
    partial: Sequence[SplitRecord],
    sizes: Mapping[int, Sequence[int]],
) -> OutputRatioStats:
    """Output-artifact to raw-input size ratio over fully successful splits.

    Diagnostic only; nothing reads this to decide eligibility.
    """

    excluded = {r.split_index for r in failed} | {r.split_index for r in partial}
    ratios: List[float] = []
    for rec in all_splits:
        if rec.split_index in excluded or rec.original_range.length == 0:
            continue
        total = sum(sizes.get(rec.split_index, ()))
        if total:
            ratios.append(total / rec.original_range.length)

    if not ratios:
        return OutputRatioStats(samples=0, mean=None, stdev=None)
    stdev = statistics.stdev(ratios) if len(ratios) > 1 else 0.0
    return OutputRatioStats(samples=len(ratios), mean=statistics.fmean(ratios), stdev=stdev)
