"""Declarative deployment reconciliation engine."""

from .config import EngineConfig
from .engine.context import DeployContext
from .engine.reconciler import DeployOutcome, DeployResult, Reconciler, deploy
from .errors import ActionContext, DeployError
from .plugins.base import DeployPlugin

__all__ = [
    "ActionContext",
    "DeployContext",
    "DeployError",
    "DeployOutcome",
    "DeployPlugin",
    "DeployResult",
    "EngineConfig",
    "Reconciler",
    "deploy",
]
