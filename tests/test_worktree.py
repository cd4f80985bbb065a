import subprocess

import pytest

from deploy_engine.errors import DirtyWorktreeError
from deploy_engine.worktree import ensure_clean_worktree


def _git_returning(returncode=0, stdout="", stderr=""):
    def fake_run(cmd, **kwargs):
        assert cmd == ["git", "status", "--porcelain"]
        return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr=stderr)

    return fake_run


@pytest.mark.asyncio
async def test_clean_worktree_passes(monkeypatch, tmp_path):
    monkeypatch.setattr(subprocess, "run", _git_returning())

    await ensure_clean_worktree(str(tmp_path))


@pytest.mark.asyncio
async def test_dirty_worktree_is_refused(monkeypatch, tmp_path):
    monkeypatch.setattr(subprocess, "run", _git_returning(stdout=" M deploy.py\n"))

    with pytest.raises(DirtyWorktreeError, match="unstaged changes"):
        await ensure_clean_worktree(str(tmp_path))


@pytest.mark.asyncio
async def test_git_failure_is_refused(monkeypatch, tmp_path):
    monkeypatch.setattr(
        subprocess, "run", _git_returning(returncode=128, stderr="not a git repository\n")
    )

    with pytest.raises(DirtyWorktreeError, match="not a git repository"):
        await ensure_clean_worktree(str(tmp_path))


@pytest.mark.asyncio
async def test_missing_git_is_refused(monkeypatch, tmp_path):
    def no_git(cmd, **kwargs):
        raise FileNotFoundError(2, "No such file or directory", "git")

    monkeypatch.setattr(subprocess, "run", no_git)

    with pytest.raises(DirtyWorktreeError):
        await ensure_clean_worktree(str(tmp_path))
