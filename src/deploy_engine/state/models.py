"""Pydantic models for persisted deployment state."""

from typing import Any, Dict, List

from pydantic import BaseModel, Field


class TargetRecord(BaseModel):
    """Last applied targets of one provider."""

    provider: str
    hook: str  # Hook reference the provider's plugin is loaded from
    targets: List[Dict[str, Any]] = Field(default_factory=list)

    def to_document(self) -> Dict[str, Any]:
        """Render as stored under the provider's key."""
        return {"hook": self.hook, "targets": self.targets}

    @classmethod
    def from_document(cls, provider: str, document: Dict[str, Any]) -> "TargetRecord":
        """Build from the mapping stored under the provider's key."""
        return cls(provider=provider, **document)
