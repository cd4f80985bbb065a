"""Configuration module for the deploy engine."""

import os
from enum import Enum
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LogFormat(str, Enum):
    """Log renderer."""

    CONSOLE = "console"
    JSON = "json"


class EngineConfig(BaseSettings):
    """Engine configuration from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="DEPLOY_ENGINE_",
        case_sensitive=False,
    )

    # Project layout
    root_dir: str = Field(
        default=".",
        description="Project root; relative paths below resolve against it"
    )
    deploy_script: str = Field(
        default="deploy.py",
        description="Deploy script path or 'module:function' reference"
    )
    state_file: str = Field(
        default="targets.yaml",
        description="Target store file"
    )
    dry_run_file: str = Field(
        default="targets.debug.yaml",
        description="Side file written instead of the store on dry runs"
    )
    lock_file: str = Field(
        default="deploy.lock",
        description="Advisory lock preventing parallel deployments"
    )
    secrets_file: Optional[str] = Field(
        default=None,
        description="YAML mapping of secrets loaded on first declaration"
    )

    # Run behaviour
    dry_run: bool = Field(
        default=False,
        description="Compute actions without invoking or persisting them"
    )
    require_clean_worktree: bool = Field(
        default=True,
        description="Refuse to deploy with unstaged git changes"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )
    log_format: LogFormat = Field(
        default=LogFormat.CONSOLE,
        description="Log renderer (console or json)"
    )

    def _resolve(self, path: str) -> str:
        return os.path.join(os.path.abspath(self.root_dir), path)

    @property
    def root_path(self) -> str:
        """Absolute project root."""
        return os.path.abspath(self.root_dir)

    @property
    def state_path(self) -> str:
        """Absolute path of the target store."""
        return self._resolve(self.state_file)

    @property
    def dry_run_path(self) -> str:
        """Absolute path of the dry-run side file."""
        return self._resolve(self.dry_run_file)

    @property
    def lock_path(self) -> str:
        """Absolute path of the lock file."""
        return self._resolve(self.lock_file)

    @property
    def secrets_path(self) -> Optional[str]:
        """Absolute path of the secrets file, if configured."""
        if not self.secrets_file:
            return None
        return self._resolve(self.secrets_file)
