"""End-to-end checkpoint cycles against a local store and a fake engine."""

import json

import pytest

from commoncrawl_parse.checkpoint.config import CheckpointConfig
from commoncrawl_parse.checkpoint.errors import MultipleStagedCheckpointsError
from commoncrawl_parse.checkpoint.orchestrator import main, run_checkpoint_cycle
from commoncrawl_parse.checkpoint.state import CheckpointStateManager


@pytest.fixture
def config(store):
    return CheckpointConfig(store_root=store.root, split_size=100, splits_per_segment=3, max_simultaneous_jobs=4)


@pytest.fixture
def seeded(seed_segment):
    seed_segment(
        100,
        all_lines=[f"s3n://h/log{i}:0+1000" for i in range(5)],
        failed=["2,s3n://h/log2:0+1000", "4,s3n://h/log4:0+1000"],
        partial=["4,s3n://h/log4:900+100,s3n://h/log4:0+1000"],
    )


def test_full_success_promotes_checkpoint(store, config, seeded, fake_engine):
    result = run_checkpoint_cycle(store, fake_engine, config)

    assert result.fully_succeeded and result.promoted
    assert result.total_segments == 4  # 11 sub-ranges packed 3 per segment
    assert len(fake_engine.submitted) == 4
    assert store.list("checkpoints") == [str(result.checkpoint_id)]
    assert result.exit_code == 0


def test_partial_failure_leaves_checkpoint_staged_then_resumes(store, config, seeded, engine_factory):
    manager = CheckpointStateManager(store, split_size=100, splits_per_segment=3)
    checkpoint_id, segments = manager.resolve_or_create()
    failing = segments[1].segment_id

    first = run_checkpoint_cycle(store, engine_factory(fail={failing}), config)
    assert first.checkpoint_id == checkpoint_id
    assert list(first.dispatch.failed) == [failing]
    assert not first.promoted
    assert first.exit_code == 0
    assert manager.find_staged_checkpoint_id() == checkpoint_id

    retry_engine = engine_factory()
    second = run_checkpoint_cycle(store, retry_engine, config)
    assert second.checkpoint_id == checkpoint_id
    assert [r.segment_id for r in retry_engine.submitted] == [failing]
    assert second.promoted
    assert manager.last_committed_checkpoint_id() == checkpoint_id


def test_auto_promote_can_be_disabled(store, config, seeded, fake_engine):
    config.auto_promote = False
    result = run_checkpoint_cycle(store, fake_engine, config)
    assert result.fully_succeeded and not result.promoted
    assert store.list("checkpoints") == []


def test_multiple_staged_fails_before_dispatch(store, config, fake_engine, stage_segment):
    stage_segment(1, 1, ["s3n://h/a:0+1"])
    stage_segment(2, 2, ["s3n://h/a:0+1"])
    with pytest.raises(MultipleStagedCheckpointsError):
        run_checkpoint_cycle(store, fake_engine, config)
    assert fake_engine.submitted == []


def test_main_exit_codes(tmp_path, store, seed_segment, stage_segment, monkeypatch):
    monkeypatch.delenv("CC_CHECKPOINT_CONFIG_PATH", raising=False)
    monkeypatch.chdir(tmp_path)
    seed_segment(100, all_lines=["s3n://h/a:0+10"])

    # Nothing failed: fatal-but-expected.
    assert main(["--store-root", str(store.root), "--", "true"]) == 4

    stage_segment(1, 1, ["s3n://h/a:0+1"])
    stage_segment(2, 2, ["s3n://h/a:0+1"])
    assert main(["--store-root", str(store.root), "--", "true"]) == 2

    # No job command.
    assert main(["--store-root", str(store.root)]) == 1


def test_main_runs_cycle_from_config_file(tmp_path, store, seeded, monkeypatch):
    import sys

    cfg = tmp_path / "checkpoint_config.json"
    cfg.write_text(
        json.dumps(
            {
                "store_root": str(store.root),
                "split_size": 500,
                "splits_per_segment": 10,
                "max_simultaneous_jobs": 2,
                "job_command": [sys.executable, "-c", "print('ok')"],
                "heartbeat_seconds": 1,
            }
        ),
        encoding="utf-8",
    )
    monkeypatch.setenv("CC_CHECKPOINT_CONFIG_PATH", str(cfg))

    assert main([]) == 0
    assert len(store.list("checkpoints")) == 1
