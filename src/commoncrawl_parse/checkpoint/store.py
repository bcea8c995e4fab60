"""Durable store used for manifests, markers and checkpoint records.

The scheduler only needs a handful of operations (list/read/write/delete/
exists), so the store is kept behind a small protocol. ``LocalFileStore``
implements it over a directory tree; writes go through a sibling ``.tmp`` file
and a rename so readers never see partial content.

Layout (relative to the store root):
  valid_segments/<segment_id>/{splits,failed_splits,trailing_splits}.txt
  checkpoint_staging/<checkpoint_id>/splits.txt          (audit record)
  checkpoint_staging/<checkpoint_id>/<segment_id>/splits.txt
  checkpoint_staging/<checkpoint_id>/<segment_id>/_SUCCESS
  checkpoint_staging/<checkpoint_id>/<segment_id>/{output,logs}/
  checkpoints/<checkpoint_id>                            (commit record)
"""

from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import List, Protocol

VALID_SEGMENTS_PATH = "valid_segments"
CHECKPOINT_STAGING_PATH = "checkpoint_staging"
CHECKPOINTS_PATH = "checkpoints"

SPLITS_MANIFEST_FILE = "splits.txt"
# Last file written when a staged checkpoint has been fully constructed.
CHECKPOINT_BUILT_FILE = "_BUILT"
JOB_SUCCESS_FILE = "_SUCCESS"
JOB_OUTPUT_PATH = "output"
JOB_LOG_PATH = "logs"


def join(*parts: object) -> str:
    return "/".join(str(p).strip("/") for p in parts if str(p).strip("/"))


def valid_segment_dir(segment_id: int) -> str:
    return join(VALID_SEGMENTS_PATH, segment_id)


def staging_dir(checkpoint_id: int) -> str:
    return join(CHECKPOINT_STAGING_PATH, checkpoint_id)


def staged_segment_dir(checkpoint_id: int, segment_id: int) -> str:
    return join(CHECKPOINT_STAGING_PATH, checkpoint_id, segment_id)


def committed_record_path(checkpoint_id: int) -> str:
    return join(CHECKPOINTS_PATH, checkpoint_id)


def numeric_names(names: List[str]) -> List[int]:
    """Return the all-digit entries of a listing as sorted ints."""

    return sorted(int(n) for n in names if n.isdigit())


class CheckpointStore(Protocol):
    def list(self, prefix: str) -> List[str]: ...

    def read(self, path: str) -> str: ...

    def write(self, path: str, text: str) -> None: ...

    def atomic_create(self, path: str) -> None: ...

    def delete(self, path: str, recursive: bool = False) -> None: ...

    def exists(self, path: str) -> bool: ...

    def size(self, path: str) -> int: ...


class LocalFileStore:
    """Filesystem-backed store rooted at ``root``."""

    def __init__(self, root: Path):
        self.root = Path(root).expanduser().resolve()

    def __repr__(self) -> str:
        return f"LocalFileStore({str(self.root)!r})"

    def local_path(self, path: str) -> Path:
        p = (self.root / path).resolve()
        if p != self.root and self.root not in p.parents:
            raise ValueError(f"Path escapes store root: {path}")
        return p

    def list(self, prefix: str) -> List[str]:
        d = self.local_path(prefix)
        if not d.is_dir():
            return []
        return sorted(p.name for p in d.iterdir() if not p.name.endswith(".tmp"))

    def read(self, path: str) -> str:
        return self.local_path(path).read_text(encoding="utf-8")

    def write(self, path: str, text: str) -> None:
        target = self.local_path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_name(target.name + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        tmp.replace(target)

    def atomic_create(self, path: str) -> None:
        self.write(path, "")

    def delete(self, path: str, recursive: bool = False) -> None:
        p = self.local_path(path)
        if p.is_dir() and not p.is_symlink():
            if recursive:
                shutil.rmtree(p)
            else:
                p.rmdir()
        elif p.exists() or p.is_symlink():
            p.unlink()

    def exists(self, path: str) -> bool:
        return self.local_path(path).exists()

    def size(self, path: str) -> int:
        return self.local_path(path).stat().st_size
