"""Import-friendly status and reporting layer for parse checkpoints.

The runner (``orchestrator.py``) is primarily a CLI. This module provides a
stable surface for status checks, manual promotion and exporting a
checkpoint's segment layout to Parquet for ad-hoc analysis.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import pyarrow as pa
import pyarrow.parquet as pq

from .splits import Checkpoint
from .state import CheckpointStateManager
from .store import CheckpointStore

REPORT_SCHEMA = pa.schema(
    [
        ("checkpoint_id", pa.int64()),
        ("checkpoint_state", pa.string()),
        ("segment_id", pa.int64()),
        ("segment_state", pa.string()),
        ("ordinal", pa.int32()),
        ("source_path", pa.string()),
        ("offset", pa.int64()),
        ("length", pa.int64()),
    ]
)


def _iso_now() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def _manager(store: CheckpointStore) -> CheckpointStateManager:
    # Status and reporting never build checkpoints, so packing settings are unused.
    return CheckpointStateManager(store, split_size=1, splits_per_segment=1)


def _checkpoint_summary(checkpoint: Checkpoint) -> Dict[str, Any]:
    segments = []
    for s in checkpoint.segments:
        segments.append(
            {
                "segment_id": s.segment_id,
                "state": s.state.value,
                "ranges": len(s.manifest),
                "bytes": sum(r.length for r in s.manifest),
            }
        )
    succeeded = sum(1 for s in segments if s["state"] == "succeeded")
    return {
        "checkpoint_id": checkpoint.checkpoint_id,
        "state": checkpoint.state.value,
        "segments": segments,
        "summary": {"total": len(segments), "succeeded": succeeded, "pending": len(segments) - succeeded},
    }


def checkpoint_status(store: CheckpointStore) -> Dict[str, Any]:
    """Return a JSON-able view of committed and staged checkpoints."""

    manager = _manager(store)
    staged_ids = manager.staged_checkpoint_ids()
    res: Dict[str, Any] = {
        "ok": len(staged_ids) <= 1,
        "checked_at": _iso_now(),
        "last_committed_checkpoint_id": manager.last_committed_checkpoint_id(),
        "committed_checkpoint_ids": manager.committed_checkpoint_ids(),
        "staged_checkpoint_ids": staged_ids,
        "unfinished_checkpoint_ids": manager.unfinished_checkpoint_ids(),
        "staged": None,
    }
    if len(staged_ids) > 1:
        res["error"] = "more than one staged checkpoint"
    elif staged_ids:
        res["staged"] = _checkpoint_summary(manager.load_checkpoint(staged_ids[0]))
    return res


def promote_checkpoint(store: CheckpointStore, checkpoint_id: Optional[int] = None) -> Dict[str, Any]:
    """Promote the given (or the single staged) checkpoint."""

    manager = _manager(store)
    if checkpoint_id is None:
        checkpoint_id = manager.find_staged_checkpoint_id()
        if checkpoint_id is None:
            return {"ok": False, "error": "no staged checkpoint"}
    checkpoint = manager.promote(int(checkpoint_id))
    return {"ok": True, **_checkpoint_summary(checkpoint)}


def export_checkpoint_parquet(
    store: CheckpointStore,
    checkpoint_id: int,
    out_path: Path,
    *,
    compression: str = "zstd",
) -> int:
    """Write one row per segment sub-range; return the row count."""

    checkpoint = _manager(store).load_checkpoint(int(checkpoint_id))
    batch: Dict[str, list] = {name: [] for name in REPORT_SCHEMA.names}
    for s in checkpoint.segments:
        for ordinal, r in enumerate(s.manifest):
            batch["checkpoint_id"].append(checkpoint.checkpoint_id)
            batch["checkpoint_state"].append(checkpoint.state.value)
            batch["segment_id"].append(s.segment_id)
            batch["segment_state"].append(s.state.value)
            batch["ordinal"].append(ordinal)
            batch["source_path"].append(r.source_path)
            batch["offset"].append(r.offset)
            batch["length"].append(r.length)

    table = pa.Table.from_pydict(batch, schema=REPORT_SCHEMA)
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    tmp = out_path.with_suffix(out_path.suffix + ".tmp")
    pq.write_table(table, tmp, compression=compression)
    tmp.replace(out_path)
    return table.num_rows
