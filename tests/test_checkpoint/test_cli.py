"""Test that CLI help commands and subcommands work correctly."""

import json
import subprocess
import sys

from commoncrawl_parse.checkpoint.cli import main


def test_runner_help():
    """Test that the checkpoint runner displays help."""
    result = subprocess.run(
        [sys.executable, "-m", "commoncrawl_parse.checkpoint.orchestrator", "--help"],
        capture_output=True,
        text=True,
        timeout=10
    )
    assert result.returncode == 0
    assert "checkpoint" in result.stdout.lower()


def test_unified_help():
    """Test that the unified CLI displays help."""
    result = subprocess.run(
        [sys.executable, "-m", "commoncrawl_parse.checkpoint.cli", "--help"],
        capture_output=True,
        text=True,
        timeout=10,
    )
    assert result.returncode == 0
    assert "cc-parse-checkpoint" in result.stdout.lower()


def test_status_reports_staged_checkpoint(store, stage_segment, capsys):
    stage_segment(77, 5, ["s3n://h/a:0+10", "s3n://h/a:10+10"], succeeded=True)
    stage_segment(77, 6, ["s3n://h/a:20+10"])

    assert main(["status", "--store-root", str(store.root)]) == 0
    res = json.loads(capsys.readouterr().out)
    assert res["last_committed_checkpoint_id"] == -1
    assert res["staged"]["checkpoint_id"] == 77
    assert res["staged"]["summary"] == {"total": 2, "succeeded": 1, "pending": 1}


def test_promote_refuses_then_succeeds(store, stage_segment, capsys):
    stage_segment(77, 5, ["s3n://h/a:0+10"])

    assert main(["promote", "--store-root", str(store.root)]) == 5
    store.atomic_create("checkpoint_staging/77/5/_SUCCESS")
    assert main(["promote", "--store-root", str(store.root)]) == 0
    assert store.exists("checkpoints/77")
    assert store.exists("valid_segments/5/splits.txt")
