"""Context handed to deploy scripts."""

import asyncio
from typing import Any, Awaitable, Dict, List, Union

from ..secrets import Secrets
from .queue import DeclarationQueue


class DeployContext:
    """What a deploy script sees while it is evaluated.

    Scripts register the hooks they use and declare targets against them:

        async def main(ctx):
            web = ctx.add_hook("myproject.plugins:web")
            ctx.declare(web, {"name": "x", "size": 1})
            ctx.declare(web, fetch_generated_target())  # may still be running
    """

    def __init__(self, root: str, queue: DeclarationQueue, secrets: Secrets, dry_run: bool = False):
        """Initialize context.

        Args:
            root: Project root
            queue: Queue receiving declarations
            secrets: Secrets, loaded on first declaration
            dry_run: Whether this run only plans actions
        """
        self.root = root
        self.secrets = secrets
        self.dry_run = dry_run
        self.command = "deploy"
        self._queue = queue
        self._hooks: List[str] = []

    @property
    def hooks(self) -> List[str]:
        """Hook references registered so far, in registration order."""
        return list(self._hooks)

    def add_hook(self, hook: str) -> str:
        """Register a hook so its plugin is loaded before the first apply.

        Args:
            hook: 'package.module:attribute' reference

        Returns:
            The hook reference, for use with ``declare``
        """
        if hook not in self._hooks:
            self._hooks.append(hook)
        return hook

    def declare(
        self,
        hook: str,
        target: Union[Dict[str, Any], Awaitable[Dict[str, Any]]],
    ) -> "asyncio.Future[Dict[str, Any]]":
        """Declare the desired state of one resource.

        Args:
            hook: Hook reference of the provider managing the target
            target: Target fields, or an awaitable producing them

        Returns:
            Future resolving to the applied target. Awaiting it is optional.
        """
        self.add_hook(hook)
        return self._queue.put(hook, target)
