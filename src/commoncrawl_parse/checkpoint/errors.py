"""Error taxonomy for the parse checkpoint scheduler.

Fatal errors derive from :class:`CheckpointError` and carry the process exit
status the runner should use. :class:`SegmentSubmissionError` is the one
non-fatal class: it is recorded per segment and never aborts a cycle.
"""

from __future__ import annotations

from typing import Optional


class CheckpointError(RuntimeError):
    exit_code = 1


class MalformedManifestError(CheckpointError):
    """A non-comment manifest line did not match its kind's grammar."""

    exit_code = 3

    def __init__(self, message: str, *, path: Optional[str] = None, line_no: Optional[int] = None):
        self.path = path
        self.line_no = line_no
        where = ""
        if path is not None:
            where = f" ({path}" + (f":{line_no}" if line_no is not None else "") + ")"
        super().__init__(f"{message}{where}")


class MultipleStagedCheckpointsError(CheckpointError):
    exit_code = 2

    def __init__(self, checkpoint_ids: list[int]):
        self.checkpoint_ids = list(checkpoint_ids)
        super().__init__(
            f"More than one staged checkpoint found: {self.checkpoint_ids}. Operator cleanup required."
        )


class NoOutstandingWorkError(CheckpointError):
    exit_code = 4


class CheckpointConstructionError(CheckpointError):
    exit_code = 5


class CheckpointIncompleteError(CheckpointError):
    """Promotion was requested while some segments lack a success marker."""

    exit_code = 5

    def __init__(self, checkpoint_id: int, pending: list[int]):
        self.checkpoint_id = checkpoint_id
        self.pending = list(pending)
        super().__init__(
            f"Checkpoint {checkpoint_id} has {len(self.pending)} segment(s) without a success marker"
        )


class SegmentSubmissionError(RuntimeError):
    def __init__(self, segment_id: int, message: str):
        self.segment_id = segment_id
        super().__init__(f"segment {segment_id}: {message}")
