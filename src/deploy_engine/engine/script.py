"""Deploy script loading."""

import asyncio
import importlib
import importlib.util
import os
from typing import Any, Awaitable, Callable

import structlog

from ..errors import ScriptError

logger = structlog.get_logger()

DeployScript = Callable[[Any], Awaitable[None]]

DEFAULT_ENTRYPOINT = "main"


async def load_deploy_script(reference: str, root: str) -> DeployScript:
    """Resolve a deploy script to its entry point.

    The reference is either a path to a ``.py`` file (relative to root),
    optionally suffixed with ``:function``, or a ``package.module:function``
    import path. The entry point defaults to ``main`` and receives the
    DeployContext.

    Args:
        reference: Script reference
        root: Project root

    Returns:
        Entry point callable

    Raises:
        ScriptError: If the script cannot be loaded
    """
    target, _, entrypoint = reference.partition(":")
    entrypoint = entrypoint or DEFAULT_ENTRYPOINT

    try:
        if target.endswith(".py"):
            path = target if os.path.isabs(target) else os.path.join(root, target)
            module = await asyncio.to_thread(_load_file, path)
        else:
            module = await asyncio.to_thread(importlib.import_module, target)
    except FileNotFoundError as e:
        raise ScriptError(f"Deploy script not found: {e.filename}") from e
    except Exception as e:
        logger.error("script.load_failed", reference=reference, error=str(e))
        raise ScriptError(f"Cannot load deploy script {reference}: {e}") from e

    func = getattr(module, entrypoint, None)
    if not callable(func):
        raise ScriptError(f"Deploy script {reference} has no callable '{entrypoint}'")

    logger.info("script.loaded", reference=reference, entrypoint=entrypoint)
    return func


def _load_file(path: str):
    if not os.path.exists(path):
        raise FileNotFoundError(2, "No such file", path)

    spec = importlib.util.spec_from_file_location("_deploy_script", path)
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot import {path}")

    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module
