"""Deploy plugins and their loader."""

from .base import DeployPlugin, DeployTarget, RevertFunction
from .loader import PluginRegistry

__all__ = [
    "DeployPlugin",
    "DeployTarget",
    "PluginRegistry",
    "RevertFunction",
]
