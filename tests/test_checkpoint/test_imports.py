"""Test that the checkpoint entry points import correctly."""


def test_runner_import():
    from commoncrawl_parse.checkpoint.orchestrator import main
    assert callable(main)


def test_cli_import():
    from commoncrawl_parse.checkpoint.cli import main
    assert callable(main)


def test_package_exports():
    import commoncrawl_parse.checkpoint as checkpoint
    assert callable(checkpoint.run_checkpoint_cycle)
