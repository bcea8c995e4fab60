"""Unified parse checkpoint CLI.

Examples:
  cc-parse-checkpoint run --store-root /storage/ccparse -- ccparse-job --manifest {manifest} --output {output}
  cc-parse-checkpoint status --store-root /storage/ccparse
  cc-parse-checkpoint promote --store-root /storage/ccparse
  cc-parse-checkpoint report --store-root /storage/ccparse --checkpoint-id 1700000010000 --out ckpt.parquet
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from . import api
from .config import CheckpointConfig
from .errors import CheckpointError
from .orchestrator import add_run_arguments, configure_logging, run_from_args
from .store import LocalFileStore

logger = logging.getLogger(__name__)


def _store_from_args(args: argparse.Namespace) -> LocalFileStore:
    if args.store_root:
        return LocalFileStore(Path(args.store_root))
    config_path = Path(args.config) if args.config else CheckpointConfig.default_path()
    if not config_path.exists():
        raise SystemExit("Pass --store-root or a config file with store_root")
    return LocalFileStore(CheckpointConfig.from_json(config_path).store_root)


def _cmd_status(args: argparse.Namespace) -> int:
    res = api.checkpoint_status(_store_from_args(args))
    sys.stdout.write(json.dumps(res, indent=2, sort_keys=True) + "\n")
    return 0 if res.get("ok") else 2


def _cmd_promote(args: argparse.Namespace) -> int:
    configure_logging(args.verbose)
    try:
        res = api.promote_checkpoint(_store_from_args(args), args.checkpoint_id)
    except CheckpointError as e:
        logger.error(f"Promotion refused: {e}")
        return e.exit_code
    sys.stdout.write(json.dumps(res, indent=2, sort_keys=True) + "\n")
    return 0 if res.get("ok") else 1


def _cmd_report(args: argparse.Namespace) -> int:
    rows = api.export_checkpoint_parquet(
        _store_from_args(args),
        args.checkpoint_id,
        Path(args.out),
        compression=args.compression,
    )
    sys.stderr.write(f"wrote {rows} row(s) to {args.out}\n")
    return 0


def _add_store_arguments(p: argparse.ArgumentParser) -> None:
    p.add_argument("--store-root", type=str, default=None, help="Root directory of the parse output store")
    p.add_argument("--config", type=str, default=None, help="JSON config file providing store_root")


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(prog="cc-parse-checkpoint", description="Common Crawl parse checkpoint CLI")
    sub = ap.add_subparsers(dest="cmd", required=True)

    ap_run = sub.add_parser("run", help="Run one checkpoint cycle")
    add_run_arguments(ap_run)
    ap_run.set_defaults(func=run_from_args)

    ap_status = sub.add_parser("status", help="Show committed and staged checkpoints as JSON")
    _add_store_arguments(ap_status)
    ap_status.set_defaults(func=_cmd_status)

    ap_promote = sub.add_parser("promote", help="Promote a fully processed staged checkpoint")
    _add_store_arguments(ap_promote)
    ap_promote.add_argument("--checkpoint-id", type=int, default=None, help="Checkpoint to promote (default: the staged one)")
    ap_promote.add_argument("--verbose", action="store_true")
    ap_promote.set_defaults(func=_cmd_promote)

    ap_report = sub.add_parser("report", help="Export a checkpoint's segment layout to Parquet")
    _add_store_arguments(ap_report)
    ap_report.add_argument("--checkpoint-id", type=int, required=True)
    ap_report.add_argument("--out", required=True, help="Output Parquet file path")
    ap_report.add_argument("--compression", type=str, default="zstd", choices=["zstd", "snappy", "gzip"])
    ap_report.set_defaults(func=_cmd_report)

    args = ap.parse_args(argv)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
