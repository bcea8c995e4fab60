"""Checkpoint-and-recovery scheduler for Common Crawl parse runs.

After a parse pass, failed and partially processed splits are collected into a
staged checkpoint, repacked into right-sized segments, resubmitted with bounded
concurrency, and promoted once every segment has succeeded.
"""

from .orchestrator import CycleResult, run_checkpoint_cycle

__all__ = ["CycleResult", "run_checkpoint_cycle"]
