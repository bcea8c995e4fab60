"""Checkpoint runner configuration.

Values come from a JSON file (``checkpoint_config.json`` by default, or
``$CC_CHECKPOINT_CONFIG_PATH``) with command-line arguments taking precedence.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import List, Optional

from .submission import JobConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "checkpoint_config.json"

DEFAULT_SPLIT_SIZE = 64 * 1024 * 1024
DEFAULT_SPLITS_PER_SEGMENT = 100
MAX_SIMULTANEOUS_JOBS = 100


@dataclass
class CheckpointConfig:
    """Checkpoint runner configuration"""
    store_root: Path
    job_command: List[str] = field(default_factory=list)
    split_size: int = DEFAULT_SPLIT_SIZE
    splits_per_segment: int = DEFAULT_SPLITS_PER_SEGMENT
    max_simultaneous_jobs: int = MAX_SIMULTANEOUS_JOBS
    max_attempts: int = 3
    max_failures: int = 1000
    speculative: bool = True
    attempt_timeout_s: float = 20 * 60
    job_timeout_s: float = 120 * 60
    heartbeat_seconds: int = 30
    min_free_space_gb: float = 10.0
    collect_output_stats: bool = False
    auto_promote: bool = True

    def __post_init__(self):
        self.store_root = Path(self.store_root)
        self.job_command = [str(c) for c in (self.job_command or [])]
        if int(self.split_size) < 1:
            raise ValueError(f"split_size must be >= 1 (got {self.split_size})")
        if int(self.splits_per_segment) < 1:
            raise ValueError(f"splits_per_segment must be >= 1 (got {self.splits_per_segment})")
        if int(self.max_simultaneous_jobs) < 1:
            raise ValueError(f"max_simultaneous_jobs must be >= 1 (got {self.max_simultaneous_jobs})")

    @property
    def job(self) -> JobConfig:
        return JobConfig(
            max_attempts=int(self.max_attempts),
            max_failures=int(self.max_failures),
            speculative=bool(self.speculative),
            attempt_timeout_s=float(self.attempt_timeout_s),
            job_timeout_s=float(self.job_timeout_s),
        )

    @classmethod
    def from_json(cls, path: Path) -> 'CheckpointConfig':
        """Load configuration from JSON file"""
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning(f"Ignoring unknown config keys in {path}: {', '.join(unknown)}")
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def default_path(cls) -> Path:
        return Path(os.environ.get("CC_CHECKPOINT_CONFIG_PATH") or DEFAULT_CONFIG_FILE)

    @classmethod
    def from_args(cls, args) -> 'CheckpointConfig':
        """Create config from command-line args, with JSON config as fallback"""
        config_file = Path(args.config) if getattr(args, "config", None) else cls.default_path()

        if config_file.exists():
            logger.info(f"Loading configuration from {config_file}")
            config = cls.from_json(config_file)
        else:
            if not getattr(args, "store_root", None):
                raise SystemExit(f"Config file {config_file} not found and --store-root not given")
            logger.info(f"Config file {config_file} not found, using defaults")
            config = cls(store_root=Path(args.store_root))

        overrides = {
            "store_root": "store_root",
            "split_size": "split_size",
            "splits_per_segment": "splits_per_segment",
            "workers": "max_simultaneous_jobs",
            "job_timeout_s": "job_timeout_s",
            "attempt_timeout_s": "attempt_timeout_s",
            "heartbeat_seconds": "heartbeat_seconds",
        }
        for arg_name, attr in overrides.items():
            value = getattr(args, arg_name, None)
            if value is not None and value != getattr(config, attr):
                logger.info(f"Overriding {attr}: {value}")
                setattr(config, attr, type(getattr(config, attr))(value))

        job_command: Optional[List[str]] = getattr(args, "job_command", None)
        if job_command:
            if job_command[:1] == ["--"]:
                job_command = job_command[1:]
            config.job_command = list(job_command)
        if getattr(args, "no_promote", False):
            config.auto_promote = False

        config.__post_init__()
        return config
