"""Docker Compose deploy plugin.

Each target is one compose project:

    ctx.declare("deploy_engine.plugins.compose:compose_plugin", {
        "project": "web",
        "compose_file": "deploy/web.yaml",
        "env": {"WEB_IMAGE_TAG": "1.4.2"},
    })

Compose files resolve against the project root when the plugin is loaded
through ``compose_plugin``.

The plugin has no ``update`` hook, so a changed project is brought down
with its stored definition and brought up with the new one.
"""

import asyncio
import os
import subprocess
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import structlog

from .base import DeployPlugin, DeployTarget, RevertFunction

logger = structlog.get_logger()


@dataclass
class ComposeConfig:
    """Docker Compose configuration."""

    working_dir: str
    binary: str = "docker-compose"
    timeout: int = 300


class ComposePlugin(DeployPlugin):
    """Spawns and kills Docker Compose projects."""

    name = "compose"

    def __init__(self, working_dir: str = ".", binary: str = "docker-compose", timeout: int = 300):
        """Initialize Compose plugin.

        Args:
            working_dir: Directory compose files are resolved against
            binary: Compose executable
            timeout: Per-command timeout in seconds
        """
        self.config = ComposeConfig(
            working_dir=working_dir,
            binary=binary,
            timeout=timeout,
        )
        logger.info(
            "compose.plugin_initialized",
            workdir=working_dir,
            binary=binary,
        )

    async def identify(self, target: DeployTarget) -> Dict[str, Any]:
        return {"project": target["project"]}

    async def spawn(self, target: DeployTarget) -> Optional[RevertFunction]:
        """Bring the project up.

        Args:
            target: Compose target

        Returns:
            Function bringing the project back down
        """
        await self._up(target)

        async def revert():
            await self._down(target)

        return revert

    async def kill(self, target: DeployTarget) -> Optional[RevertFunction]:
        """Bring the project down.

        Args:
            target: Stored compose target

        Returns:
            Function bringing the project back up with its stored definition
        """
        await self._down(target)

        async def revert():
            await self._up(target)

        return revert

    async def _up(self, target: DeployTarget):
        logger.info("compose.up.starting", project=target["project"])
        await self._run(target, ["up", "-d", "--remove-orphans"])
        logger.info("compose.up.success", project=target["project"])

    async def _down(self, target: DeployTarget):
        logger.info("compose.down.starting", project=target["project"])
        await self._run(target, ["down", "--remove-orphans"])
        logger.info("compose.down.success", project=target["project"])

    async def _run(self, target: DeployTarget, args: List[str]):
        compose_file = self._compose_file(target)
        if not os.path.exists(compose_file):
            raise ComposeError(f"Compose file not found: {compose_file}")

        env_vars = os.environ.copy()
        for key, value in (target.get("env") or {}).items():
            env_vars[str(key)] = str(value)
        for service, tag in (target.get("image_tags") or {}).items():
            env_vars[f"{service.upper()}_IMAGE_TAG"] = str(tag)

        cmd = [self.config.binary, "-f", compose_file, "-p", target["project"], *args]
        logger.debug("compose.command", cmd=" ".join(cmd))

        try:
            result = await asyncio.to_thread(
                subprocess.run,
                cmd,
                cwd=self.config.working_dir,
                capture_output=True,
                text=True,
                env=env_vars,
                timeout=self.config.timeout,
            )
        except subprocess.TimeoutExpired as e:
            logger.error("compose.timeout", project=target["project"], error=str(e))
            raise ComposeError(f"Compose command timed out: {' '.join(cmd)}") from e

        if result.returncode != 0:
            logger.error(
                "compose.command_failed",
                project=target["project"],
                stderr=result.stderr,
                stdout=result.stdout,
                returncode=result.returncode,
            )
            raise ComposeError(result.stderr.strip() or f"exit status {result.returncode}")

    def _compose_file(self, target: DeployTarget) -> str:
        compose_file = target.get("compose_file", "docker-compose.yaml")
        if os.path.isabs(compose_file):
            return compose_file
        return os.path.join(self.config.working_dir, compose_file)


class ComposeError(Exception):
    """Compose operation error."""

    pass


def compose_plugin(context) -> ComposePlugin:
    """Hook factory resolving compose files against the project root.

    Args:
        context: DeployContext of the running deployment

    Returns:
        ComposePlugin
    """
    return ComposePlugin(working_dir=context.root)
