"""Checkpoint state: find or build the staged checkpoint, filter, promote.

A checkpoint is *staged* once ``checkpoint_staging/<id>/_BUILT`` exists and no
commit record does, and *committed* once ``checkpoints/<id>`` has been written. The
commit record is written atomically and is the only thing readers consult, so
a checkpoint is never observed as neither staged nor committed. The segment
data stays in the checkpoint's directory after commit; promotion publishes each
segment into ``valid_segments/`` with a pointer back to its output.

A staging directory with neither marker nor commit record is a construction
that never finished. It is discarded and rebuilt from the valid segments.

All methods here run single-threaded, before or after the dispatch phase.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional, Tuple

from .classifier import arc_sizes_by_split, classify_outstanding, output_to_raw_ratio
from .errors import (
    CheckpointConstructionError,
    CheckpointIncompleteError,
    MultipleStagedCheckpointsError,
    NoOutstandingWorkError,
)
from .ledger import format_audit_record, read_range_manifest, read_split_records
from .segment_builder import CHECKPOINT_ID_OFFSET, build_checkpoint_segments
from .splits import Checkpoint, CheckpointState, ManifestKind, Segment, SegmentState, SplitRecord
from .store import (
    CHECKPOINT_BUILT_FILE,
    CHECKPOINT_STAGING_PATH,
    CHECKPOINTS_PATH,
    JOB_OUTPUT_PATH,
    JOB_SUCCESS_FILE,
    SPLITS_MANIFEST_FILE,
    VALID_SEGMENTS_PATH,
    CheckpointStore,
    committed_record_path,
    join,
    numeric_names,
    staged_segment_dir,
    staging_dir,
    valid_segment_dir,
)

logger = logging.getLogger(__name__)

PUBLISHED_MARKER = "_PUBLISHED"
OUTPUT_LOCATION_FILE = "output_location"


def _now_ms() -> int:
    return int(time.time() * 1000)


class CheckpointStateManager:
    def __init__(
        self,
        store: CheckpointStore,
        *,
        split_size: int,
        splits_per_segment: int,
        collect_output_stats: bool = False,
        clock: Callable[[], int] = _now_ms,
    ):
        self.store = store
        self.split_size = int(split_size)
        self.splits_per_segment = int(splits_per_segment)
        self.collect_output_stats = bool(collect_output_stats)
        self.clock = clock

    # ---- discovery ----

    def committed_checkpoint_ids(self) -> List[int]:
        return numeric_names(self.store.list(CHECKPOINTS_PATH))

    def last_committed_checkpoint_id(self) -> int:
        """Return the newest committed checkpoint id, or -1 if none exist."""

        ids = self.committed_checkpoint_ids()
        return ids[-1] if ids else -1

    def is_checkpoint_built(self, checkpoint_id: int) -> bool:
        return self.store.exists(join(staging_dir(checkpoint_id), CHECKPOINT_BUILT_FILE))

    def _uncommitted_staging_ids(self) -> List[int]:
        committed = set(self.committed_checkpoint_ids())
        return [i for i in numeric_names(self.store.list(CHECKPOINT_STAGING_PATH)) if i not in committed]

    def staged_checkpoint_ids(self) -> List[int]:
        return [i for i in self._uncommitted_staging_ids() if self.is_checkpoint_built(i)]

    def unfinished_checkpoint_ids(self) -> List[int]:
        """Staging directories whose construction was interrupted."""

        return [i for i in self._uncommitted_staging_ids() if not self.is_checkpoint_built(i)]

    def discard_unfinished_checkpoints(self) -> List[int]:
        discarded = self.unfinished_checkpoint_ids()
        for checkpoint_id in discarded:
            logger.warning(f"Discarding partially constructed checkpoint {checkpoint_id}")
            self.store.delete(staging_dir(checkpoint_id), recursive=True)
        return discarded

    def find_staged_checkpoint_id(self) -> Optional[int]:
        staged = self.staged_checkpoint_ids()
        if len(staged) > 1:
            raise MultipleStagedCheckpointsError(staged)
        return staged[0] if staged else None

    def valid_segment_ids_after(self, checkpoint_id: int) -> List[int]:
        return [i for i in numeric_names(self.store.list(VALID_SEGMENTS_PATH)) if i > checkpoint_id]

    # ---- outstanding work ----

    def _log_output_stats(
        self,
        segment_id: int,
        all_splits: List[SplitRecord],
        failed: List[SplitRecord],
        partial: List[SplitRecord],
    ) -> None:
        seg_dir = valid_segment_dir(segment_id)
        names = [n for n in self.store.list(seg_dir) if n.endswith(".arc.gz")]
        sizes = arc_sizes_by_split((n, self.store.size(join(seg_dir, n))) for n in names)
        stats = output_to_raw_ratio(all_splits, failed, partial, sizes)
        if stats.samples:
            logger.info(
                f"Segment {segment_id}: output/raw ratio mean={stats.mean:.4f} "
                f"stdev={stats.stdev:.4f} over {stats.samples} split(s)"
            )

    def collect_outstanding(
        self, last_checkpoint_id: int, segment_ids: Optional[List[int]] = None
    ) -> List[SplitRecord]:
        """Classify every valid segment newer than ``last_checkpoint_id``."""

        if segment_ids is None:
            segment_ids = self.valid_segment_ids_after(last_checkpoint_id)
        out: List[SplitRecord] = []
        for segment_id in segment_ids:
            all_splits = read_split_records(self.store, segment_id, ManifestKind.ALL)
            failed = read_split_records(self.store, segment_id, ManifestKind.FAILED)
            partial = read_split_records(self.store, segment_id, ManifestKind.PARTIAL)

            if self.collect_output_stats:
                self._log_output_stats(segment_id, all_splits, failed, partial)

            outstanding = classify_outstanding(all_splits, failed, partial)
            logger.info(
                f"Segment {segment_id}: {len(all_splits)} split(s), {len(partial)} partial, "
                f"{len(outstanding) - len(partial)} failed"
            )
            out.extend(outstanding)
        return out

    # ---- segments ----

    def _success_marker(self, checkpoint_id: int, segment_id: int) -> str:
        return join(staged_segment_dir(checkpoint_id, segment_id), JOB_SUCCESS_FILE)

    def is_segment_succeeded(self, checkpoint_id: int, segment_id: int) -> bool:
        return self.store.exists(self._success_marker(checkpoint_id, segment_id))

    def load_segments(self, checkpoint_id: int) -> List[Segment]:
        segments: List[Segment] = []
        for segment_id in numeric_names(self.store.list(staging_dir(checkpoint_id))):
            manifest = read_range_manifest(
                self.store, join(staged_segment_dir(checkpoint_id, segment_id), SPLITS_MANIFEST_FILE)
            )
            state = (
                SegmentState.SUCCEEDED
                if self.is_segment_succeeded(checkpoint_id, segment_id)
                else SegmentState.PENDING
            )
            segments.append(Segment(segment_id, checkpoint_id, manifest, state))
        return segments

    def load_checkpoint(self, checkpoint_id: int) -> Checkpoint:
        state = (
            CheckpointState.COMMITTED
            if self.store.exists(committed_record_path(checkpoint_id))
            else CheckpointState.STAGED
        )
        return Checkpoint(checkpoint_id, state, self.load_segments(checkpoint_id))

    # ---- lifecycle ----

    def _create_checkpoint(self) -> int:
        last_id = self.last_committed_checkpoint_id()
        logger.info(f"No staged checkpoint. Last committed checkpoint id: {last_id}")
        scanned = self.valid_segment_ids_after(last_id)
        records = self.collect_outstanding(last_id, scanned)
        if not records:
            raise NoOutstandingWorkError(
                f"No failed or partial splits found in segments after checkpoint {last_id}"
            )

        # The checkpoint id stays above every scanned segment id.
        base_segment_id = max(self.clock(), last_id + 1, max(scanned) + 1)
        checkpoint_id = base_segment_id + CHECKPOINT_ID_OFFSET

        try:
            self.store.write(join(staging_dir(checkpoint_id), SPLITS_MANIFEST_FILE), format_audit_record(records))
            build_checkpoint_segments(
                self.store,
                checkpoint_id,
                records,
                base_segment_id=base_segment_id,
                split_size=self.split_size,
                splits_per_segment=self.splits_per_segment,
            )
            self.store.atomic_create(join(staging_dir(checkpoint_id), CHECKPOINT_BUILT_FILE))
        except BaseException as e:
            logger.error(f"Failed to create checkpoint {checkpoint_id}: {e}. Removing staging area")
            self.store.delete(staging_dir(checkpoint_id), recursive=True)
            raise

        logger.info(f"Created staged checkpoint {checkpoint_id} with {len(records)} outstanding split(s)")
        return checkpoint_id

    def resolve_or_create(self) -> Tuple[int, List[Segment]]:
        """Resume the single staged checkpoint, or build a new one."""

        self.finish_interrupted_promotions()
        self.discard_unfinished_checkpoints()

        checkpoint_id = self.find_staged_checkpoint_id()
        if checkpoint_id is not None:
            logger.info(f"Resuming staged checkpoint {checkpoint_id}")
        else:
            checkpoint_id = self._create_checkpoint()
        return checkpoint_id, self.load_segments(checkpoint_id)

    def filter_pending(self, checkpoint_id: int, segments: List[Segment]) -> List[Segment]:
        """Drop segments with a success marker; clear stale output on the rest."""

        pending: List[Segment] = []
        for segment in segments:
            if self.is_segment_succeeded(checkpoint_id, segment.segment_id):
                segment.state = SegmentState.SUCCEEDED
                continue
            output = join(staged_segment_dir(checkpoint_id, segment.segment_id), JOB_OUTPUT_PATH)
            if self.store.exists(output):
                logger.info(f"Existing output folder located for segment {segment.segment_id}. Deleting folder")
                self.store.delete(output, recursive=True)
            segment.state = SegmentState.PENDING
            pending.append(segment)
        return pending

    def _publish(self, checkpoint_id: int, segment_ids: List[int]) -> None:
        for segment_id in segment_ids:
            src_dir = staged_segment_dir(checkpoint_id, segment_id)
            dst_dir = valid_segment_dir(segment_id)
            for kind in ManifestKind:
                src = join(src_dir, kind.file_name)
                if self.store.exists(src):
                    self.store.write(join(dst_dir, kind.file_name), self.store.read(src))
            self.store.write(join(dst_dir, OUTPUT_LOCATION_FILE), join(src_dir, JOB_OUTPUT_PATH) + "\n")
        self.store.atomic_create(join(staging_dir(checkpoint_id), PUBLISHED_MARKER))

    def promote(self, checkpoint_id: int) -> Checkpoint:
        """Commit a fully processed staged checkpoint.

        The commit record is written first (atomic), then segments are
        published. Publication is idempotent and is finished by
        ``finish_interrupted_promotions`` if the process dies in between.
        """

        checkpoint = self.load_checkpoint(checkpoint_id)
        if checkpoint.state is CheckpointState.COMMITTED:
            logger.info(f"Checkpoint {checkpoint_id} already committed")
            self.finish_interrupted_promotions()
            return checkpoint

        if not self.is_checkpoint_built(checkpoint_id):
            raise CheckpointConstructionError(f"Checkpoint {checkpoint_id} was never fully constructed")

        pending = [s.segment_id for s in checkpoint.segments if s.state is not SegmentState.SUCCEEDED]
        if pending or not checkpoint.segments:
            raise CheckpointIncompleteError(checkpoint_id, pending)

        segment_ids = [s.segment_id for s in checkpoint.segments]
        record = f"# checkpoint {checkpoint_id}\n" + "".join(f"{i}\n" for i in segment_ids)
        self.store.write(committed_record_path(checkpoint_id), record)
        logger.info(f"Committed checkpoint {checkpoint_id} ({len(segment_ids)} segment(s))")

        self._publish(checkpoint_id, segment_ids)
        checkpoint.state = CheckpointState.COMMITTED
        return checkpoint

    def finish_interrupted_promotions(self) -> List[int]:
        finished: List[int] = []
        committed = set(self.committed_checkpoint_ids())
        for checkpoint_id in numeric_names(self.store.list(CHECKPOINT_STAGING_PATH)):
            if checkpoint_id not in committed:
                continue
            if self.store.exists(join(staging_dir(checkpoint_id), PUBLISHED_MARKER)):
                continue
            logger.warning(f"Finishing interrupted promotion of checkpoint {checkpoint_id}")
            self._publish(checkpoint_id, numeric_names(self.store.list(staging_dir(checkpoint_id))))
            finished.append(checkpoint_id)
        return finished
