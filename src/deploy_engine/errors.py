"""Deploy engine error taxonomy.

Precondition errors are raised before anything is applied. Errors raised
once the apply phase has started carry the outcome of the rollback sweep.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple


@dataclass(frozen=True)
class ActionContext:
    """Provider and action a plugin call was made for."""

    provider: str
    action: str  # "load", "pull", "identify", "spawn", "update", "kill"
    identity: Optional[str] = None

    def __str__(self) -> str:
        label = f"{self.provider}.{self.action}"
        if self.identity:
            label += f"[{self.identity[:12]}]"
        return label


class DeployError(Exception):
    """Base class for all deploy engine errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.rollback_errors: List[Tuple[ActionContext, BaseException]] = []
        self.unrevertable: List[ActionContext] = []


class PreconditionError(DeployError):
    """Raised before reconciliation begins; nothing needs reverting."""


class DeployInProgressError(PreconditionError):
    """Raised when another deployment holds the lock."""


class DirtyWorktreeError(PreconditionError):
    """Raised when the project has unstaged changes."""


class StoreError(DeployError):
    """Raised when the target store cannot be read."""


class StateNotSavedError(DeployError):
    """Raised when the store write fails after a successful apply.

    Infrastructure has already changed, so the store must be reconciled
    by hand.
    """


class PluginLoadError(DeployError):
    """Raised when a hook reference does not yield a usable plugin."""

    def __init__(self, hook: str, message: str):
        super().__init__(f'Cannot load deploy hook "{hook}": {message}')
        self.hook = hook


class ScriptError(DeployError):
    """Raised when the deploy script itself fails."""


class DeclarationError(DeployError):
    """Raised when a declared target fails to resolve."""

    def __init__(self, message: str, index: Optional[int] = None, hook: Optional[str] = None):
        super().__init__(message)
        self.index = index
        self.hook = hook


class PluginActionError(DeployError):
    """Raised when a plugin hook throws during reconciliation."""

    def __init__(self, context: ActionContext, error: BaseException):
        super().__init__(
            f'Plugin "{context.provider}" failed during {context.action}: {error}'
        )
        self.context = context
