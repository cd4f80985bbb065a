"""Secrets made available to deploy scripts and plugins."""

import asyncio
import os
from collections.abc import Mapping
from typing import Any, Dict, Iterator, Optional

import structlog
import yaml

logger = structlog.get_logger()


class SecretsError(KeyError):
    """Raised when a secret is requested before loading or is missing."""


class Secrets(Mapping):
    """Read-only mapping of secrets, loaded once per run.

    Loading happens when the first target is declared, so deploy scripts
    that declare nothing never touch the secrets file.
    """

    def __init__(self, path: Optional[str] = None):
        """Initialize secrets.

        Args:
            path: YAML file with a flat mapping of secret names to values
        """
        self.path = path
        self._values: Dict[str, Any] = {}
        self._loaded = False

    @property
    def loaded(self) -> bool:
        return self._loaded

    async def load(self):
        """Load secrets from the configured file. Later calls are no-ops."""
        if self._loaded:
            return

        if self.path and os.path.exists(self.path):
            data = await asyncio.to_thread(_read_yaml, self.path)
            if not isinstance(data, dict):
                raise ValueError(f"Secrets file {self.path} is not a mapping")
            self._values = {str(k): v for k, v in data.items()}
            logger.info("secrets.loaded", path=self.path, count=len(self._values))
        elif self.path:
            logger.warning("secrets.file_not_found", path=self.path)

        self._loaded = True

    def __getitem__(self, key: str) -> Any:
        if not self._loaded:
            raise SecretsError(f"Secrets are not loaded yet (requested '{key}')")
        try:
            return self._values[key]
        except KeyError:
            raise SecretsError(f"Unknown secret '{key}'") from None

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)


def _read_yaml(path: str) -> Any:
    with open(path) as f:
        return yaml.safe_load(f) or {}
