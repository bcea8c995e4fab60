#!/usr/bin/env python3
"""
Common Crawl Parse Checkpoint Runner

Runs one checkpoint cycle over the parse output store:
1. Resume the staged checkpoint, or build a new one from the failed and
   partial splits of every segment parsed since the last committed checkpoint
2. Skip segments that already carry a success marker
3. Resubmit the remaining segments with bounded concurrency
4. Promote the checkpoint once every segment has succeeded

Segments that still fail stay staged and are retried by the next cycle, so a
cycle with unresolved segments still exits 0. Non-zero exits are reserved for
fatal conditions (malformed manifests, more than one staged checkpoint,
nothing to recover).

Examples:
  cc-parse-checkpoint-run --store-root /storage/ccparse -- \\
      ccparse-job --manifest {manifest} --output {output} --max-attempts {max_attempts}
  cc-parse-checkpoint-run --config checkpoint_config.json --workers 20
"""

from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass, field
from typing import List

import psutil

from .config import CheckpointConfig
from .dispatch import DispatchResult, dispatch_segments
from .errors import CheckpointError, NoOutstandingWorkError
from .state import CheckpointStateManager
from .store import CheckpointStore, LocalFileStore
from .submission import BatchExecutionEngine, JobSubmissionAdapter, SubprocessEngine, describe_engine

logger = logging.getLogger(__name__)


@dataclass
class CycleResult:
    checkpoint_id: int
    total_segments: int
    pending_segments: List[int] = field(default_factory=list)
    dispatch: DispatchResult = field(default_factory=DispatchResult)
    promoted: bool = False

    @property
    def fully_succeeded(self) -> bool:
        return self.dispatch.all_succeeded

    @property
    def exit_code(self) -> int:
        # Unresolved segments are retried next cycle; not a failure.
        return 0


def check_resources(config: CheckpointConfig) -> bool:
    """Log free disk/memory; return False when free space is below the floor."""

    try:
        disk = psutil.disk_usage(str(config.store_root))
    except OSError as e:
        logger.warning(f"Could not stat store root {config.store_root}: {e}")
        return True
    free_gb = disk.free / (1024 ** 3)
    mem_gb = psutil.virtual_memory().available / (1024 ** 3)
    logger.info(f"Resources: {free_gb:.1f} GB free under store root, {mem_gb:.1f} GB memory available")
    if free_gb < config.min_free_space_gb:
        logger.warning(f"Free space {free_gb:.1f} GB is below min_free_space_gb={config.min_free_space_gb}")
        return False
    return True


def build_state_manager(store: CheckpointStore, config: CheckpointConfig) -> CheckpointStateManager:
    return CheckpointStateManager(
        store,
        split_size=config.split_size,
        splits_per_segment=config.splits_per_segment,
        collect_output_stats=config.collect_output_stats,
    )


def run_checkpoint_cycle(
    store: CheckpointStore,
    engine: BatchExecutionEngine,
    config: CheckpointConfig,
) -> CycleResult:
    """Run one checkpoint cycle. Fatal conditions raise ``CheckpointError``."""

    manager = build_state_manager(store, config)

    logger.info("Starting checkpoint. Searching for existing or creating new staged checkpoint")
    checkpoint_id, segments = manager.resolve_or_create()
    logger.info(f"Checkpoint id is: {checkpoint_id}")

    pending = manager.filter_pending(checkpoint_id, segments)
    logger.info(f"Queueing segments. There are {len(pending)} pending out of a total of {len(segments)}")

    adapter = JobSubmissionAdapter(store, engine, config.job)
    dispatch = dispatch_segments(pending, adapter, concurrency=config.max_simultaneous_jobs)

    result = CycleResult(
        checkpoint_id=checkpoint_id,
        total_segments=len(segments),
        pending_segments=[s.segment_id for s in pending],
        dispatch=dispatch,
    )

    if not dispatch.all_succeeded:
        logger.warning(
            f"{len(dispatch.failed)} segment(s) still unresolved; checkpoint {checkpoint_id} stays staged"
        )
    elif config.auto_promote:
        manager.promote(checkpoint_id)
        result.promoted = True
    else:
        logger.info(f"All segments succeeded; auto-promotion disabled for checkpoint {checkpoint_id}")
    return result


def add_run_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to JSON configuration file (default: $CC_CHECKPOINT_CONFIG_PATH or checkpoint_config.json)",
    )
    parser.add_argument("--store-root", type=str, help="Root directory of the parse output store (overrides config file)")
    parser.add_argument("--split-size", type=int, help="Target sub-range size in bytes (overrides config file)")
    parser.add_argument("--splits-per-segment", type=int, help="Max sub-ranges per checkpoint segment (overrides config file)")
    parser.add_argument("--workers", type=int, help="Maximum simultaneous segment jobs (overrides config file)")
    parser.add_argument("--job-timeout-s", type=float, help="Per-job wall-clock ceiling in seconds")
    parser.add_argument("--attempt-timeout-s", type=float, help="Per-attempt timeout in seconds")
    parser.add_argument("--heartbeat-seconds", type=int, help="Heartbeat interval while jobs run")
    parser.add_argument("--no-promote", action="store_true", help="Do not promote the checkpoint after a fully successful cycle")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose debug logging")
    parser.add_argument(
        "job_command",
        nargs=argparse.REMAINDER,
        help="Segment job command template (use `--` before it); overrides job_command from config",
    )


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def run_from_args(args: argparse.Namespace) -> int:
    configure_logging(bool(getattr(args, "verbose", False)))

    config = CheckpointConfig.from_args(args)
    if not config.job_command:
        logger.error("No job command configured (set job_command in the config file or pass one after `--`)")
        return 1

    store = LocalFileStore(config.store_root)
    engine = SubprocessEngine(
        config.job_command,
        resolve_path=lambda p: str(store.local_path(p)),
        heartbeat_seconds=config.heartbeat_seconds,
    )

    logger.info("")
    logger.info("Active Configuration:")
    logger.info(f"  store_root:            {config.store_root}")
    logger.info(f"  split_size:            {config.split_size:,}")
    logger.info(f"  splits_per_segment:    {config.splits_per_segment}")
    logger.info(f"  max_simultaneous_jobs: {config.max_simultaneous_jobs}")
    logger.info(f"  job:                   {config.job}")
    logger.info(f"  engine:                {describe_engine(engine)}")
    logger.info(f"  auto_promote:          {config.auto_promote}")
    logger.info("")

    check_resources(config)

    try:
        result = run_checkpoint_cycle(store, engine, config)
    except NoOutstandingWorkError as e:
        logger.info(f"Nothing to checkpoint: {e}")
        return e.exit_code
    except CheckpointError as e:
        logger.error(f"Checkpoint failed: {e}")
        return e.exit_code

    logger.info(
        f"Checkpoint {result.checkpoint_id}: {len(result.dispatch.succeeded)} succeeded, "
        f"{len(result.dispatch.failed)} unresolved, promoted={result.promoted}"
    )
    return result.exit_code


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Common Crawl Parse Checkpoint Orchestrator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    add_run_arguments(parser)
    return run_from_args(parser.parse_args(argv))


if __name__ == "__main__":
    raise SystemExit(main())
