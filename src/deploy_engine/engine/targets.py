"""Targets paired with their derived identity."""

import hashlib
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional


def target_identity(fields: Dict[str, Any]) -> str:
    """Hash identity fields into a stable identity.

    Args:
        fields: Identity projection returned by a plugin

    Returns:
        Hex SHA-256 of the canonical JSON encoding
    """
    encoded = json.dumps(fields, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(encoded.encode()).hexdigest()


@dataclass(frozen=True)
class ResolvedTarget:
    """A declared target after pull and identify."""

    index: int
    provider: str
    hook: str
    identity: str
    target: Dict[str, Any]


@dataclass
class PriorTarget:
    """A target recorded by the last successful run."""

    provider: str
    target: Dict[str, Any]
    identity: Optional[str] = None
    claimed_by: Optional[int] = None  # Index of the declaration reusing it

    @property
    def reused(self) -> bool:
        return self.claimed_by is not None


@dataclass
class ActionRecord:
    """One spawn, update or kill, applied or planned."""

    action: str  # "spawn", "update", "kill"
    provider: str
    identity: Optional[str]
    target: Dict[str, Any]
    changes: Optional[Dict[str, Any]] = None
    replaced: bool = False  # Update performed as kill + spawn
    revertible: bool = True

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "action": self.action,
            "provider": self.provider,
            "identity": self.identity,
        }
        if self.changes is not None:
            result["changes"] = self.changes
        if self.replaced:
            result["replaced"] = True
        return result

