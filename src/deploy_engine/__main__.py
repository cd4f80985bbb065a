"""Main entry point for the deploy engine."""

import asyncio
import sys
from typing import Optional

from .config import EngineConfig
from .engine.reconciler import DeployOutcome, Reconciler
from .errors import DeployError, DeployInProgressError
from .utils.logging import setup_logging

EXIT_UNCHANGED = 0
EXIT_FAILED = 1
EXIT_CHANGED = 2
EXIT_IN_PROGRESS = 3


def run(config: Optional[EngineConfig] = None) -> int:
    """Run one deployment and map its outcome to an exit status.

    Args:
        config: Engine configuration; read from the environment when omitted

    Returns:
        0 when nothing changed, 2 when changes were applied (or planned by a
        dry run), 3 when another deployment holds the lock, 1 on failure
    """
    config = config or EngineConfig()
    setup_logging(config.log_level, config.log_format.value)

    reconciler = Reconciler(config)

    try:
        result = asyncio.run(reconciler.run())
    except KeyboardInterrupt:
        print("\nDeployment interrupted")
        return EXIT_FAILED
    except DeployInProgressError as e:
        print(f"Deployment failed: {e}")
        return EXIT_IN_PROGRESS
    except DeployError as e:
        print(f"Deployment failed: {e}")
        for context, error in e.rollback_errors:
            print(f"  Reverting {context} failed: {error}")
        for context in e.unrevertable:
            print(f"  {context} could not be reverted")
        return EXIT_FAILED

    if result.outcome == DeployOutcome.UNCHANGED:
        print("No deployment actions were required.")
        return EXIT_UNCHANGED

    if result.dry_run:
        print(f"Dry run complete! Targets saved to: {result.state_path}")
    else:
        print(
            f"Deployed: {result.spawned} spawned, "
            f"{result.updated} updated, {result.killed} killed"
        )
    for warning in result.warnings:
        print(f"Warning: {warning}")
    return EXIT_CHANGED


def main():
    """Main entry point."""
    try:
        sys.exit(run())
    except Exception as e:
        print(f"Deploy engine failed: {e}")
        sys.exit(EXIT_FAILED)


if __name__ == "__main__":
    main()
