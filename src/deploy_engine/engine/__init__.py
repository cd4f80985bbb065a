"""Reconciliation core: diffing, ordering, applying and reverting targets."""

from .context import DeployContext
from .diff import ChangeSet, diff_targets
from .queue import Declaration, DeclarationQueue
from .reconciler import DeployOutcome, DeployResult, Reconciler, RunState, deploy
from .revert import RevertStack
from .targets import ActionRecord, PriorTarget, ResolvedTarget, target_identity

__all__ = [
    "ActionRecord",
    "ChangeSet",
    "Declaration",
    "DeclarationQueue",
    "DeployContext",
    "DeployOutcome",
    "DeployResult",
    "PriorTarget",
    "Reconciler",
    "ResolvedTarget",
    "RevertStack",
    "RunState",
    "deploy",
    "diff_targets",
    "target_identity",
]
