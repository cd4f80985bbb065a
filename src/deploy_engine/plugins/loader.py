"""Deploy hook loading.

A hook reference is an opaque ``package.module:attribute`` string. It is
persisted alongside each provider's targets so obsolete targets can still
be killed after their declaration is removed from the deploy script.
"""

import asyncio
import importlib
import inspect
from typing import Any, Dict, Optional

import structlog

from ..errors import PluginLoadError
from .base import DeployPlugin

logger = structlog.get_logger()

_REQUIRED_HOOKS = ("identify", "spawn", "kill")


class PluginRegistry:
    """Memoizes one plugin instance per hook reference for a run."""

    def __init__(self, context: Any = None):
        """Initialize registry.

        Args:
            context: DeployContext handed to plugin factories
        """
        self.context = context
        self._loading: Dict[str, asyncio.Future] = {}
        self._by_hook: Dict[str, DeployPlugin] = {}
        self._by_name: Dict[str, DeployPlugin] = {}

    def register(self, hook: str, plugin: DeployPlugin) -> DeployPlugin:
        """Register an already constructed plugin under a hook reference.

        Args:
            hook: Hook reference persisted with the plugin's targets
            plugin: Plugin instance

        Returns:
            The registered plugin
        """
        self._validate(hook, plugin)
        self._by_hook[hook] = plugin
        self._by_name[plugin.name] = plugin
        logger.debug("plugins.registered", hook=hook, provider=plugin.name)
        return plugin

    def get(self, name: str) -> Optional[DeployPlugin]:
        """Get a loaded plugin by provider name."""
        return self._by_name.get(name)

    async def load(self, hook: str) -> DeployPlugin:
        """Load the plugin behind a hook reference, once per run.

        Args:
            hook: Hook reference

        Returns:
            DeployPlugin

        Raises:
            PluginLoadError: If the hook cannot be imported or is invalid
        """
        plugin = self._by_hook.get(hook)
        if plugin is not None:
            return plugin

        future = self._loading.get(hook)
        if future is None:
            future = asyncio.ensure_future(self._load(hook))
            self._loading[hook] = future
        return await asyncio.shield(future)

    async def _load(self, hook: str) -> DeployPlugin:
        logger.info("plugins.loading", hook=hook)

        module_name, _, attr = hook.partition(":")
        if not module_name or not attr:
            raise PluginLoadError(hook, "expected 'package.module:attribute'")

        try:
            module = await asyncio.to_thread(importlib.import_module, module_name)
        except ImportError as e:
            raise PluginLoadError(hook, str(e)) from e

        try:
            obj = getattr(module, attr)
        except AttributeError as e:
            raise PluginLoadError(hook, f"module has no attribute '{attr}'") from e

        try:
            if inspect.isclass(obj):
                plugin = obj()
            elif isinstance(obj, DeployPlugin):
                plugin = obj
            elif callable(obj):
                plugin = obj(self.context)
                if inspect.isawaitable(plugin):
                    plugin = await plugin
            else:
                plugin = obj
        except Exception as e:
            raise PluginLoadError(hook, f"plugin factory failed: {e}") from e

        self.register(hook, plugin)
        logger.info("plugins.loaded", hook=hook, provider=plugin.name)
        return plugin

    def _validate(self, hook: str, plugin: Any):
        name = getattr(plugin, "name", None)
        if not name or not isinstance(name, str):
            raise PluginLoadError(hook, "plugin has no name")

        missing = [h for h in _REQUIRED_HOOKS if not callable(getattr(plugin, h, None))]
        if missing:
            raise PluginLoadError(hook, f"plugin is missing {', '.join(missing)}")

        existing = self._by_name.get(name)
        if existing is not None and existing is not plugin:
            raise PluginLoadError(hook, f'provider name "{name}" is already loaded')
