"""Pytest fixtures for deploy engine tests."""

import pytest
import yaml

from deploy_engine.config import EngineConfig
from deploy_engine.plugins.loader import PluginRegistry

from fake_plugins import RecordingPlugin

WEB_HOOK = "tests.hooks:web"
DB_HOOK = "tests.hooks:db"


@pytest.fixture
def journal():
    """Shared record of plugin actions and reverts."""
    return []


@pytest.fixture
def make_config(tmp_path):
    """Build an engine config rooted in a temp directory."""

    def _make(**overrides):
        values = {
            "root_dir": str(tmp_path),
            "require_clean_worktree": False,
        }
        values.update(overrides)
        return EngineConfig(**values)

    return _make


@pytest.fixture
def write_store(tmp_path):
    """Write a target store document and return its path."""

    def _write(document, name="targets.yaml"):
        path = tmp_path / name
        path.write_text(yaml.safe_dump(document, sort_keys=False))
        return path

    return _write


@pytest.fixture
def read_store(tmp_path):
    """Read a YAML file from the temp directory."""

    def _read(name="targets.yaml"):
        return yaml.safe_load((tmp_path / name).read_text())

    return _read


@pytest.fixture
def registry(journal):
    """Registry with 'web' and 'db' recording plugins pre-registered."""
    plugins = PluginRegistry()
    plugins.register(WEB_HOOK, RecordingPlugin("web", journal))
    plugins.register(DB_HOOK, RecordingPlugin("db", journal))
    return plugins
