"""Persisted deployment state."""

from .lock import DeployLock
from .models import TargetRecord
from .store import TargetStore

__all__ = [
    "DeployLock",
    "TargetRecord",
    "TargetStore",
]
