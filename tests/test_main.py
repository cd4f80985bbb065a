import pytest
import structlog
import yaml

from deploy_engine.__main__ import (
    EXIT_CHANGED,
    EXIT_FAILED,
    EXIT_IN_PROGRESS,
    EXIT_UNCHANGED,
    run,
)

MEMORY_SCRIPT = (
    "async def main(ctx):\n"
    "    ctx.declare('fake_plugins:MemoryPlugin', {'name': 'cache'})\n"
)


@pytest.fixture(autouse=True)
def reset_logging():
    """run() configures structlog against the captured stderr."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def project(tmp_path, make_config):
    def _project(script, **overrides):
        (tmp_path / "deploy.py").write_text(script)
        return make_config(**overrides)

    return _project


def test_nothing_declared_exits_unchanged(project, capsys):
    assert run(project("async def main(ctx):\n    pass\n")) == EXIT_UNCHANGED
    assert "No deployment actions were required." in capsys.readouterr().out


def test_dry_run_exits_changed(project, tmp_path, capsys):
    assert run(project(MEMORY_SCRIPT, dry_run=True)) == EXIT_CHANGED

    assert "Dry run complete!" in capsys.readouterr().out
    assert not (tmp_path / "targets.yaml").exists()
    preview = yaml.safe_load((tmp_path / "targets.debug.yaml").read_text())
    assert preview["memory"]["targets"] == [{"name": "cache"}]


def test_held_lock_exits_in_progress(project, tmp_path, capsys):
    (tmp_path / "deploy.lock").write_text("4242")

    assert run(project(MEMORY_SCRIPT)) == EXIT_IN_PROGRESS
    assert "already in progress" in capsys.readouterr().out


def test_script_failure_exits_failed(project, capsys):
    script = "async def main(ctx):\n    raise RuntimeError('bad config')\n"

    assert run(project(script)) == EXIT_FAILED
    assert "bad config" in capsys.readouterr().out
