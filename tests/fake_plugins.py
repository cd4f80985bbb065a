"""In-memory deploy plugins for tests."""

import asyncio
from typing import Any, Dict, List, Optional, Set, Tuple

from deploy_engine.plugins.base import DeployPlugin


class RecordingPlugin(DeployPlugin):
    """Plugin writing every action and revert to a shared journal.

    Journal entries are tuples such as ("spawn", "web", "x") or
    ("revert", "spawn", "web", "x").
    """

    def __init__(
        self,
        name: str,
        journal: List[Tuple],
        key: str = "name",
        fail_on: Optional[Set[Tuple[str, str]]] = None,
        revertible: bool = True,
        failing_reverts: Optional[Set[Tuple[str, str]]] = None,
        pulled: Optional[Dict[str, Dict[str, Any]]] = None,
    ):
        self.name = name
        self.journal = journal
        self.key = key
        self.fail_on = fail_on or set()
        self.revertible = revertible
        self.failing_reverts = failing_reverts or set()
        self.pulled = pulled or {}
        self.identified: List[Dict[str, Any]] = []

    async def identify(self, target):
        self.identified.append(target)
        return {self.key: target.get(self.key)}

    async def pull(self, target):
        return self.pulled.get(target.get(self.key))

    async def spawn(self, target):
        return await self._act("spawn", target)

    async def kill(self, target):
        return await self._act("kill", target)

    async def _act(self, action: str, target, *extra):
        label = target.get(self.key)
        await asyncio.sleep(0)
        if (action, label) in self.fail_on:
            raise RuntimeError(f"{action} of {label} exploded")
        self.journal.append((action, self.name, label, *extra))

        if not self.revertible:
            return None

        async def revert():
            if (action, label) in self.failing_reverts:
                raise RuntimeError(f"revert of {action} {label} exploded")
            self.journal.append(("revert", action, self.name, label))

        return revert


class UpdatingPlugin(RecordingPlugin):
    """Recording plugin with an update hook."""

    async def update(self, target, changes):
        return await self._act("update", target, changes)


class MemoryPlugin(DeployPlugin):
    """Loadable by hook reference; spawns into a class-level list."""

    name = "memory"
    spawned: List[Dict[str, Any]] = []

    async def identify(self, target):
        return {"name": target["name"]}

    async def spawn(self, target):
        MemoryPlugin.spawned.append(target)

        def revert():
            MemoryPlugin.spawned.remove(target)

        return revert

    async def kill(self, target):
        return None


def make_plugin(context):
    """Factory hook receiving the deploy context."""
    plugin = MemoryPlugin()
    plugin.context = context
    return plugin


NOT_A_PLUGIN = object()
