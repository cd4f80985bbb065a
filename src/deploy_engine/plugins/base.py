"""Base deploy plugin interface."""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional

DeployTarget = Dict[str, Any]
RevertFunction = Callable[[], Optional[Awaitable[None]]]


class DeployPlugin(ABC):
    """Base class for deploy providers.

    A plugin is stateless with respect to reconciliation: everything it
    needs lives in the targets it is given. Plugins may also define

        async def update(self, target, changes) -> Optional[RevertFunction]

    When ``update`` is absent the engine replaces the resource instead,
    killing the stored target and spawning the new one.
    """

    #: Provider name; keys this plugin's records in the target store.
    name: str = ""

    @abstractmethod
    async def identify(self, target: DeployTarget) -> Dict[str, Any]:
        """Project the fields that identify a target across runs.

        Args:
            target: Declared or stored target

        Returns:
            Identity fields, hashed by the engine
        """
        pass

    async def pull(self, target: DeployTarget) -> Optional[Dict[str, Any]]:
        """Refresh target fields from live infrastructure before diffing.

        Args:
            target: Declared target

        Returns:
            Fields overwriting the declared ones, or None
        """
        return None

    @abstractmethod
    async def spawn(self, target: DeployTarget) -> Optional[RevertFunction]:
        """Create the resource.

        Args:
            target: Declared target with no stored counterpart

        Returns:
            Function undoing the spawn, or None if it cannot be undone
        """
        pass

    @abstractmethod
    async def kill(self, target: DeployTarget) -> Optional[RevertFunction]:
        """Destroy a resource that is no longer declared.

        Args:
            target: Stored target

        Returns:
            Function undoing the kill, or None if it cannot be undone
        """
        pass
