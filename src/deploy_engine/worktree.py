"""Git working tree precondition."""

import asyncio
import subprocess

import structlog

from .errors import DirtyWorktreeError

logger = structlog.get_logger()


async def ensure_clean_worktree(root: str):
    """Refuse to deploy from a working tree with uncommitted changes.

    Args:
        root: Project root inside a git checkout

    Raises:
        DirtyWorktreeError: If git reports changes or cannot be run
    """
    try:
        result = await asyncio.to_thread(
            subprocess.run,
            ["git", "status", "--porcelain"],
            cwd=root,
            capture_output=True,
            text=True,
            timeout=30,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.error("worktree.git_failed", root=root, error=str(e))
        raise DirtyWorktreeError(f"Cannot check git status: {e}") from e

    if result.returncode != 0:
        logger.error("worktree.git_failed", root=root, stderr=result.stderr)
        raise DirtyWorktreeError(f"Cannot check git status: {result.stderr.strip()}")

    if result.stdout.strip():
        logger.error("worktree.dirty", root=root, changes=result.stdout.count("\n"))
        raise DirtyWorktreeError("Cannot deploy with unstaged changes")

    logger.debug("worktree.clean", root=root)
