"""Job submission: hand one checkpoint segment to the batch execution engine.

The engine owns per-unit retries, timeouts and speculative execution; this
module only builds the request, interprets the report and writes the durable
success marker.
"""

from __future__ import annotations

import logging
import os
import re
import selectors
import subprocess
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, Sequence

import psutil

from .errors import SegmentSubmissionError
from .splits import Segment
from .store import (
    JOB_LOG_PATH,
    JOB_OUTPUT_PATH,
    JOB_SUCCESS_FILE,
    SPLITS_MANIFEST_FILE,
    CheckpointStore,
    join,
    staged_segment_dir,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobConfig:
    max_attempts: int = 3
    max_failures: int = 1000
    speculative: bool = True
    attempt_timeout_s: float = 20 * 60
    job_timeout_s: float = 120 * 60


@dataclass(frozen=True)
class SubmissionRequest:
    checkpoint_id: int
    segment_id: int
    manifest_path: str
    output_path: str
    log_path: str
    job: JobConfig


@dataclass(frozen=True)
class JobReport:
    completed: bool
    failed_units: int = 0
    detail: str = ""


class BatchExecutionEngine(Protocol):
    def submit(self, request: SubmissionRequest) -> JobReport: ...


class JobSubmissionAdapter:
    """Submit segments one at a time; callable from dispatch workers.

    Each call touches only paths under its own segment directory.
    """

    def __init__(self, store: CheckpointStore, engine: BatchExecutionEngine, job: JobConfig):
        self.store = store
        self.engine = engine
        self.job = job

    def build_request(self, checkpoint_id: int, segment_id: int) -> SubmissionRequest:
        seg_dir = staged_segment_dir(checkpoint_id, segment_id)
        return SubmissionRequest(
            checkpoint_id=checkpoint_id,
            segment_id=segment_id,
            manifest_path=join(seg_dir, SPLITS_MANIFEST_FILE),
            output_path=join(seg_dir, JOB_OUTPUT_PATH),
            log_path=join(seg_dir, JOB_LOG_PATH),
            job=self.job,
        )

    def submit(self, checkpoint_id: int, segment_id: int) -> JobReport:
        request = self.build_request(checkpoint_id, segment_id)

        self.store.delete(request.output_path, recursive=True)
        self.store.delete(request.log_path, recursive=True)

        logger.info(f"Starting job. SegmentId: {segment_id} OutputPath: {request.output_path}")
        try:
            report = self.engine.submit(request)
        except SegmentSubmissionError:
            raise
        except Exception as e:
            raise SegmentSubmissionError(segment_id, f"engine error: {e}") from e

        if not report.completed:
            raise SegmentSubmissionError(segment_id, f"job aborted: {report.detail or 'no detail'}")
        if report.failed_units > self.job.max_failures:
            raise SegmentSubmissionError(
                segment_id,
                f"{report.failed_units} failed unit(s) exceeds threshold {self.job.max_failures}",
            )

        self.store.atomic_create(join(staged_segment_dir(checkpoint_id, segment_id), JOB_SUCCESS_FILE))
        logger.info(f"Job for SegmentId: {segment_id} completed successfully ({report.failed_units} failed unit(s))")
        return report

    def __call__(self, segment: Segment) -> JobReport:
        return self.submit(segment.checkpoint_id, segment.segment_id)


_FAILED_UNITS_RX = re.compile(r"^failed_units=(\d+)\s*$")


def _terminate_tree(pid: int, *, grace_s: float = 10.0) -> None:
    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return
    procs = parent.children(recursive=True) + [parent]
    for p in procs:
        try:
            p.terminate()
        except psutil.NoSuchProcess:
            pass
    _gone, alive = psutil.wait_procs(procs, timeout=grace_s)
    for p in alive:
        try:
            p.kill()
        except psutil.NoSuchProcess:
            pass


class SubprocessEngine:
    """Run each segment job as a local command.

    ``command`` is a template list; each element is formatted with the request
    fields (``{manifest}``, ``{output}``, ``{logs}``, ``{segment_id}``,
    ``{checkpoint_id}``, ``{max_attempts}``, ``{max_failures}``,
    ``{speculative}``, ``{attempt_timeout_s}``). Exit code 0 means the job
    completed. A ``failed_units=<n>`` output line reports unit failures.
    ``job_timeout_s`` is enforced by terminating the whole process tree.
    """

    def __init__(
        self,
        command: Sequence[str],
        *,
        resolve_path: Callable[[str], str] = str,
        heartbeat_seconds: int = 30,
    ):
        if not command:
            raise ValueError("SubprocessEngine requires a non-empty command template")
        self.command = list(command)
        self.resolve_path = resolve_path
        self.heartbeat_seconds = max(1, int(heartbeat_seconds or 30))

    def render_command(self, request: SubmissionRequest) -> List[str]:
        fields = {
            "manifest": self.resolve_path(request.manifest_path),
            "output": self.resolve_path(request.output_path),
            "logs": self.resolve_path(request.log_path),
            "segment_id": request.segment_id,
            "checkpoint_id": request.checkpoint_id,
            "max_attempts": request.job.max_attempts,
            "max_failures": request.job.max_failures,
            "speculative": "true" if request.job.speculative else "false",
            "attempt_timeout_s": int(request.job.attempt_timeout_s),
        }
        return [part.format(**fields) for part in self.command]

    def submit(self, request: SubmissionRequest) -> JobReport:
        cmd = self.render_command(request)
        label = f"[segment {request.segment_id}] "
        logger.info(f"{label}Running: {' '.join(cmd)}")

        start = time.monotonic()
        deadline = start + float(request.job.job_timeout_s)
        failed_units = 0
        timed_out = False

        proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT)

        def _handle(raw: bytes) -> None:
            nonlocal failed_units
            line = raw.decode("utf-8", errors="replace").rstrip()
            m = _FAILED_UNITS_RX.match(line)
            if m:
                failed_units = int(m.group(1))
            logger.info(f"{label}{line}")

        def _kill() -> None:
            nonlocal timed_out
            timed_out = True
            logger.error(f"{label}Job exceeded {request.job.job_timeout_s:.0f}s ceiling; terminating")
            _terminate_tree(proc.pid)
            proc.wait()

        # Raw reads on the fd: a partial line must not block past the deadline.
        assert proc.stdout is not None
        fd = proc.stdout.fileno()
        pending = b""
        sel = selectors.DefaultSelector()
        sel.register(fd, selectors.EVENT_READ)
        try:
            while True:
                now = time.monotonic()
                if now >= deadline:
                    _kill()
                    break

                events = sel.select(timeout=min(self.heartbeat_seconds, max(0.1, deadline - now)))
                if not events:
                    if time.monotonic() < deadline:
                        elapsed = time.monotonic() - start
                        logger.info(f"{label}Heartbeat: still running (elapsed {elapsed/60:.1f} min)")
                    continue

                chunk = os.read(fd, 65536)
                if not chunk:
                    break
                *lines, pending = (pending + chunk).split(b"\n")
                for line in lines:
                    _handle(line)
        finally:
            sel.unregister(fd)
            sel.close()
            proc.stdout.close()

        if pending:
            _handle(pending)

        # Output closed; the job may still be running.
        if not timed_out:
            try:
                proc.wait(timeout=max(0.0, deadline - time.monotonic()))
            except subprocess.TimeoutExpired:
                _kill()

        if timed_out:
            return JobReport(completed=False, failed_units=failed_units, detail="job wall-clock timeout")
        rc = int(proc.returncode or 0)
        if rc != 0:
            return JobReport(completed=False, failed_units=failed_units, detail=f"exit code {rc}")
        return JobReport(completed=True, failed_units=failed_units)


def describe_engine(engine: BatchExecutionEngine) -> Optional[str]:
    command = getattr(engine, "command", None)
    return " ".join(command) if command else type(engine).__name__
